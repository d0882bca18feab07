"""Job orchestration engine for delegated codex agent runs.

Why files instead of a database or a daemon?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Every ``codex-agent`` invocation is a short-lived process.  Nothing supervises
the agent between invocations, so each command rehydrates the job record from
the jobs directory, probes the agent (pid liveness or tmux session state), and
writes back whatever it learned.  The store is a directory of one JSON record
per job plus auxiliary artifacts keyed by the same id:

- ``{id}.json`` job record, ``{id}.log`` captured output,
  ``{id}.prompt`` prompt handed to the agent,
- ``{id}.task.json`` task envelope, ``{id}.result.json`` cached result,
- ``{id}.done.json`` supervisor exit marker, ``{id}.runner.*`` launcher files.

Writes are atomic (temp file + rename).  Concurrent writers to the same job
race and the last write wins; status refreshes are idempotent so the race is
benign for the common "refresh then print" commands.
"""
