"""
gitmod - Telegram moderation bot with GitHub-hosted rules

gitmod keeps its moderation rules (banned words, blocked user IDs, running
giveaways) in a single JSON document inside a GitHub repository and enforces
them in Telegram groups.

Core Components:

- **Config Store**: Reads and conditionally writes the document through the
  GitHub contents API, using the blob sha as a revision token
- **Config Cache**: 60 second read-through cache with write-through refresh,
  failing open to stale or empty rules when GitHub is unreachable
- **Mutation Engine**: The only write path; fetch, mutate, commit with the
  fetched revision, refresh the cache
- **Verification Registry**: Durable pending-verification entries for new
  members, swept periodically to remove anyone who never verified

Usage:
    from gitmod.main import main
    main()  # Starts long-polling and the verification sweep
"""
