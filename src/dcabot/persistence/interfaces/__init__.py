from dcabot.persistence.interfaces.firings_repo import FiringsRepoProtocol
from dcabot.persistence.interfaces.plans_repo import PlansRepoProtocol
from dcabot.persistence.interfaces.users_repo import UsersRepoProtocol

__all__ = [
    "PlansRepoProtocol",
    "UsersRepoProtocol",
    "FiringsRepoProtocol",
]
