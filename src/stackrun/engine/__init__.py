"""Run graph engine.

A task run owns a tree of stack runs. Each stack run is one slice of work:
either a task function replayed up to its next unresolved call, or a single
service call. A slice that needs an external result suspends on a child
stack run and is resumed with the child's outcome once it finishes. Every
step is an independent claim -> execute -> persist -> trigger cycle, so no
thread or process is held while a call is outstanding.
"""
