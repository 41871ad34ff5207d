# Durable brainstorm context.
#
# +---------------------------+
# |   BrainstormState (JSON)  |   one document per session, rewritten whole
# |---------------------------|
# | request                   |
# | branches / branch_order   |
# | per-branch Q&A + finding  |
# +---------------------------+
#
# The live session (questions, waiters, transport) is not stored here; the
# two are kept in step by the brainstorm orchestrator.
