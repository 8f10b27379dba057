from osvote.ballot import Ballot, BallotStatus, Choice, create_vote
from osvote.config import ClientConfig
from osvote.keychain import TallyCheck, TallyStatus, verify_poll_results, verify_signature
from osvote.live_state import merge_frame, project
from osvote.machine import Phase, VoteMachine
from osvote.vote_cipher import open_vote, seal_vote
from osvote.vote_token import new_token

__version__ = "0.1.0"

__all__ = [
    "Ballot",
    "BallotStatus",
    "Choice",
    "ClientConfig",
    "Phase",
    "TallyCheck",
    "TallyStatus",
    "VoteMachine",
    "create_vote",
    "merge_frame",
    "new_token",
    "open_vote",
    "project",
    "seal_vote",
    "verify_poll_results",
    "verify_signature",
    "__version__",
]
