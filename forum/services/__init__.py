# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# business logic and database access for a single domain aggregate:
#
#   user_service : registration, login and password reset for User
#   post_service : creation, listing and title updates for Post
#   vote_service : the one-vote-per-user state machine and Post.score
#
# All service functions accept an AsyncSession as their first argument.
# Read paths flush at most and leave the commit to the ``get_db``
# dependency; the vote service commits its own atomic unit.
