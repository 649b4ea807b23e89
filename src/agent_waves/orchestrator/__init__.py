"""Wave orchestration for external CLI agents.

A task graph is layered into waves. Each wave is launched as a group of
child processes (one per task, one provider CLI each), supervised by a
single-threaded polling monitor, and folded into one consolidated handoff
that becomes part of the next wave's prompts.

Workers never share memory with the supervisor or with each other: the
prompt goes in on stdin, a delimited handoff block comes back on stdout, and
concurrent writers are kept apart by static per-role write scopes that are
checked before anything is launched.
"""
