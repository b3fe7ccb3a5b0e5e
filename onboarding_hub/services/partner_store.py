"""
Partner Store — partner records keyed by id in the ``partners`` namespace.

Writes are whole-record and last-writer-wins; gate fields are only ever
changed through the gate progression controller.
"""

import logging

from onboarding_hub.models.records import PartnerRecord
from onboarding_hub.services.blob_store import BlobStore

logger = logging.getLogger(__name__)

NAMESPACE = "partners"


class PartnerStore:
    def __init__(self, blobs: BlobStore | None = None):
        self._blobs = blobs or BlobStore()

    def get(self, partner_id: str) -> PartnerRecord | None:
        data = self._blobs.get(NAMESPACE, partner_id)
        return PartnerRecord.from_dict(data) if data is not None else None

    def list_all(self) -> list[PartnerRecord]:
        return [PartnerRecord.from_dict(d) for d in self._blobs.list_values(NAMESPACE)]

    def save(self, partner: PartnerRecord) -> PartnerRecord:
        self._blobs.set(NAMESPACE, partner.id, partner.to_dict())
        return partner

    def delete(self, partner_id: str) -> bool:
        return self._blobs.delete(NAMESPACE, partner_id)
