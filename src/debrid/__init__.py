"""Real-Debrid API client."""

from .client import DebridClient
from .models import ApiCallResult
