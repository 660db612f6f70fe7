"""HTTP surface: task API and the stack processor endpoint."""
