from dcabot.persistence.sqlite.firings_repo import SqliteFiringsRepo
from dcabot.persistence.sqlite.plans_repo import SqlitePlansRepo
from dcabot.persistence.sqlite.users_repo import SqliteUsersRepo

__all__ = ["SqlitePlansRepo", "SqliteUsersRepo", "SqliteFiringsRepo"]
