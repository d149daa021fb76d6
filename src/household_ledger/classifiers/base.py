from abc import ABC, abstractmethod

from household_ledger.models import (
    CategorizationResult,
    CategorySource,
    ClassificationContext,
    ClassificationRequest,
)


class Classifier(ABC):
    source: CategorySource

    @abstractmethod
    def classify_batch(
        self,
        requests: list[ClassificationRequest],
        context: ClassificationContext | None = None,
    ) -> dict[str, CategorizationResult]:
        """Classify what this tier can; ids it passes on are absent from the result."""
        pass

    def classify(
        self,
        request: ClassificationRequest,
        context: ClassificationContext | None = None,
    ) -> CategorizationResult | None:
        return self.classify_batch([request], context).get(request.id)
