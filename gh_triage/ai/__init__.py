"""Optional AI rewriting of brief summaries."""

from .models import BriefSummaryResponse
from .summary_writer import AISummaryWriter

__all__ = ["AISummaryWriter", "BriefSummaryResponse"]
