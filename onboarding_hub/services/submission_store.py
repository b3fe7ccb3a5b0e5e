"""
Submission Store — questionnaire submissions keyed by id in the
``submissions`` namespace.

Each stored submission keeps the ``templateVersion`` it was created against;
this store never rewrites that pin.
"""

import logging

from onboarding_hub.models.records import QuestionnaireSubmission
from onboarding_hub.services.blob_store import BlobStore

logger = logging.getLogger(__name__)

NAMESPACE = "submissions"


class SubmissionStore:
    def __init__(self, blobs: BlobStore | None = None):
        self._blobs = blobs or BlobStore()

    def get(self, submission_id: str) -> QuestionnaireSubmission | None:
        data = self._blobs.get(NAMESPACE, submission_id)
        return QuestionnaireSubmission.from_dict(data) if data is not None else None

    def save(self, submission: QuestionnaireSubmission) -> QuestionnaireSubmission:
        self._blobs.set(NAMESPACE, submission.id, submission.to_dict())
        return submission

    def list_by_partner(self, partner_id: str) -> list[QuestionnaireSubmission]:
        """All submissions of a partner, oldest first.

        The blob store has no secondary index, so this scans the namespace.
        """
        return [
            QuestionnaireSubmission.from_dict(d)
            for d in self._blobs.list_values(NAMESPACE)
            if d.get("partnerId") == partner_id
        ]

    def delete(self, submission_id: str) -> bool:
        return self._blobs.delete(NAMESPACE, submission_id)

    def delete_for_partner(self, partner_id: str) -> int:
        removed = 0
        for submission in self.list_by_partner(partner_id):
            if self.delete(submission.id):
                removed += 1
        if removed:
            logger.info("Deleted %d submission(s) of partner %s", removed, partner_id)
        return removed
