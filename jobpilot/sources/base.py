from abc import ABC, abstractmethod

from jobpilot.models import CandidateProfile, JobCandidate


class JobSource(ABC):
    name = "base"

    def __init__(self, profile: CandidateProfile) -> None:
        self.profile = profile

    @abstractmethod
    def search(self, query: str, locations: list[str], limit: int = 20) -> list[JobCandidate]:
        pass
