"""Agent coordination through a shared directory tree.

Why not Redis / a broker / an RPC layer?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The agents this package coordinates are a handful of long-running CLI
processes, usually one per container, restarted by an external supervisor
whenever they exit.  What they need from each other is small and slow:

- "is my upstream deliverable ready?" (handoff markers),
- "what is everybody doing right now?" (status records + heartbeats),
- "something is wrong, a human should look" (blockers, sync log),
- "here is corrective guidance for your next cycle" (feedback).

Each of those fits a file with exactly one writer.  Writers replace files
atomically (temp file + rename), readers never lock, and every record stays
on disk for an operator to inspect with ``cat``.  A broker would add an
operational dependency and hide the audit trail, while still requiring the
same restart-safe state (restart counters, status records) to live somewhere
durable.
"""
