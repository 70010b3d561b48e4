from .friendship import Friendship, FriendshipStatus
from .game import Game
from .library_entry import LibraryEntry
from .user import User

__all__ = [
    "User",
    "Game",
    "LibraryEntry",
    "Friendship",
    "FriendshipStatus",
]
