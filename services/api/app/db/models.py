from __future__ import annotations

import uuid

from tortoise import fields
from tortoise.models import Model


class QALog(Model):
    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    tenant_id = fields.CharField(max_length=255, index=True)
    session_id = fields.CharField(max_length=255, null=True)
    question = fields.TextField()
    answer = fields.TextField()
    confidence = fields.FloatField(default=0.0)
    citations = fields.JSONField(default=list)
    retrieval_scores = fields.JSONField(default=list)
    cache_hit = fields.BooleanField(default=False)
    conversational = fields.BooleanField(default=False)
    debug_info = fields.JSONField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "qa_logs"
