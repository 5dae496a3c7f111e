from abc import ABC, abstractmethod
from typing import List
from kaspa_curator.models.posts import RawPost

class SourceAdapter(ABC):
    name: str = "source"

    @abstractmethod
    async def fetch_posts(self) -> List[RawPost]:
        pass
