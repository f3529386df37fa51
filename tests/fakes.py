import threading
from pathlib import Path

from renamer.ai_provider import (
    CategorizationResponse,
    NamingResponse,
    ValidationResponse,
)
from renamer.errors import ProviderUnavailableError


class FakeProvider:
    """Scripted stand-in for an AI backend.

    Names are derived from the file stem so each file gets a distinct
    suggestion. Paths listed in ``fail_on`` raise a connection error during
    categorization; ``verdicts`` is consumed one entry per validation call.
    """

    def __init__(self, *, category="invoice", fail_on=(), verdicts=None, names=None):
        self.category = category
        self.fail_on = set(fail_on)
        self.verdicts = list(verdicts or [])
        self.names = list(names or [])
        self.calls = {"categorize": 0, "generate_name": 0, "validate_name": 0}
        self.categorized_paths = []
        self.prompts = []
        self._lock = threading.Lock()

    def _count(self, method):
        with self._lock:
            self.calls[method] += 1

    def categorize(self, file_ref, prompt, *, model):
        self._count("categorize")
        with self._lock:
            self.categorized_paths.append(file_ref.path)
        if file_ref.path in self.fail_on or file_ref.name in self.fail_on:
            raise ProviderUnavailableError("connection refused")
        return CategorizationResponse(
            category=self.category, reasoning="looks like one", raw="{}"
        )

    def generate_name(self, file_ref, prompt, *, model):
        self._count("generate_name")
        with self._lock:
            self.prompts.append(prompt)
            name = self.names.pop(0) if self.names else None
        if name is None:
            name = f"{self.category}_{Path(file_ref.name).stem}_renamed"
        return NamingResponse(name=name, reasoning="descriptive", raw="{}")

    def validate_name(self, file_ref, prompt, *, model):
        self._count("validate_name")
        with self._lock:
            valid = self.verdicts.pop(0) if self.verdicts else True
        return ValidationResponse(
            valid=valid,
            reason=None if valid else "missing category prefix",
            suggested_fix=None if valid else "start with the category",
            raw="{}",
        )
