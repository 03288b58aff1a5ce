# This package handles recall for a turn
#
# +----------------------------+
# |      Memory store          |   (Persistent, external)
# |----------------------------|
# | Conversation exchanges     |
# | Conscious memories         |
# +----------------------------+
#
# +----------------------------+
# |      Conversation store    |   (Per session, snapshotted per stage)
# |----------------------------|
# | Transcript                 |
# | Last retrieval / tool call |
# +----------------------------+
#
#    \    /
#     \  /
#      \/
# +----------------------------+
# |     Memory retriever       |   (gate -> semantic -> keyword -> merge)
# +----------------------------+
#         |
#         v
#   [system prompt context for the model]
