"""Question-generation backlog: claim, generate, parse, forward.

Jobs live in the shared ``training_data`` table. Any number of workers,
threads or processes, drain it concurrently. Mutual exclusion between them
rests on one thing only: the single-statement claim in
:meth:`TrainingRepository.claim_next`, which stamps ``lock_time`` on exactly
one eligible row. A job whose lock is older than the staleness window is
eligible again, which is how work abandoned by a crashed worker comes back.
"""
