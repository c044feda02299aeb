# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for one service:
#
#   auth_service          - accounts, tokens, email verification, password reset
#   profile_service       - user profiles and search
#   post_service          - feed posts
#   engagement_service    - likes, threaded comments, shares
#   network_service       - connection requests and suggestions
#   message_service       - one-to-one conversations
#   notification_service  - per-user notification inbox
#   news_service          - scraped news, scrape/cleanup jobs (scraper: HTML parsing)
#   advisor_service       - AI advisor prompts, chat sessions, SSE stream
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.
