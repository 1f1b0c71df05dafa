# Context engineering for a single agent run
#
# +------------------------------+
# |      Session history         |   (SessionStore, capped)
# +------------------------------+
#               |
#               v   last N turns
# +------------------------------+
# |           Context            |   (assembled per request)
# |------------------------------|
# | System prompt (date, tools,  |
# |   retrieval mode, session)   |
# | Prior conversation           |
# | Current input, merged with   |
# |   retrieved document/image   |
# +------------------------------+
#               |
#               v
#   [agent loop: model / tool calls]
