"""SQLAlchemy database models."""
from dotenv import load_dotenv
from app.models.base import Base
from app.models.brand import Brand
from app.models.content import Claim, ContentChunk, Embedding, PageContent, RawPage
from app.models.job import Job, JobDependency, JobLog
from app.models.llm import LLMResponse
from app.models.score import BrandScore


load_dotenv()

__all__ = [
    "Base",
    "Brand",
    "Job",
    "JobDependency",
    "JobLog",
    "RawPage",
    "PageContent",
    "Claim",
    "ContentChunk",
    "Embedding",
    "LLMResponse",
    "BrandScore",
]
