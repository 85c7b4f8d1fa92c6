# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single aggregate:
#
#   article_service: CRUD + filtered listing for Article, access checks via policy
#   tag_service: upsert-by-name reconciliation of Tag rows
#   user_service: registration, credentials and admin management for User
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency.  The requester, when one matters, is passed in
# as a plain ``RequesterContext`` argument.
