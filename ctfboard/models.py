"""
Record types shared by the stores, the scoring engine and the web layer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Difficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


@dataclass
class User:
    id: int
    username: str
    email: str
    password_hash: str
    is_admin: bool = False
    score: int = 0
    challenges_solved: int = 0
    is_email_verified: bool = False
    email_verification_token: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "User":
        return cls(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            password_hash=row["password_hash"],
            is_admin=bool(row["is_admin"]),
            score=row["score"],
            challenges_solved=row["challenges_solved"],
            is_email_verified=bool(row["is_email_verified"]),
            email_verification_token=row["email_verification_token"],
            created_at=row["created_at"],
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """
        Serialize the fields any authenticated client may see.

        @return: Dictionary without credentials or verification token
        """
        return {
            "id": self.id,
            "username": self.username,
            "isAdmin": self.is_admin,
            "score": self.score,
            "challengesSolved": self.challenges_solved,
        }

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize the fields the owner and administrators may see.

        @return: Dictionary without the password hash
        """
        data = self.to_public_dict()
        data.update(
            {
                "email": self.email,
                "isEmailVerified": self.is_email_verified,
                "createdAt": self.created_at,
            }
        )
        return data


@dataclass
class Challenge:
    id: int
    title: str
    description: str
    difficulty: Difficulty
    points: int
    flag: str
    category: str
    is_active: bool = True
    attachment: Optional[str] = None
    download_url: Optional[str] = None
    challenge_site_url: Optional[str] = None
    author: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "Challenge":
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            difficulty=Difficulty(row["difficulty"]),
            points=row["points"],
            flag=row["flag"],
            category=row["category"],
            is_active=bool(row["is_active"]),
            attachment=row["attachment"],
            download_url=row["download_url"],
            challenge_site_url=row["challenge_site_url"],
            author=row["author"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(
        self,
        include_flag: bool = False,
    ) -> Dict[str, Any]:
        """
        Serialize the challenge for API responses.

        @param include_flag: Only True for administrator responses
        @return: Dictionary with camelCase keys
        """
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "difficulty": self.difficulty.value,
            "points": self.points,
            "category": self.category,
            "isActive": self.is_active,
            "attachment": self.attachment,
            "downloadUrl": self.download_url,
            "challengeSiteUrl": self.challenge_site_url,
            "author": self.author,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if include_flag:
            data["flag"] = self.flag
        return data


@dataclass
class Submission:
    id: int
    user_id: int
    challenge_id: int
    flag_text: str
    is_correct: bool
    points_awarded: int
    submitted_at: str

    @classmethod
    def from_row(cls, row: Any) -> "Submission":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            challenge_id=row["challenge_id"],
            flag_text=row["flag_text"],
            is_correct=bool(row["is_correct"]),
            points_awarded=row["points_awarded"],
            submitted_at=row["submitted_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "challengeId": self.challenge_id,
            "flag": self.flag_text,
            "isCorrect": self.is_correct,
            "pointsAwarded": self.points_awarded,
            "submittedAt": self.submitted_at,
        }


@dataclass
class SubmissionResult:
    """Outcome of a flag submission that passed validation."""

    is_correct: bool
    points_awarded: int
    message: str
    submission: Submission

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"correct": self.is_correct, "message": self.message}
        if self.is_correct:
            data["points"] = self.points_awarded
        return data
