import uuid
from django.db import models


class Job(models.Model):
    class Status(models.TextChoices):
        QUEUED = "queued"
        ACTIVE = "active"
        COMPLETED = "completed"
        FAILED = "failed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    correlation_id = models.CharField(max_length=128, db_index=True)   # external reel reference
    source_url = models.URLField(max_length=2048)
    destination_prefix = models.CharField(max_length=1024)            # key prefix inside S3_BUCKET
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.QUEUED, db_index=True)

    attempts_made = models.PositiveSmallIntegerField(default=0)
    max_attempts = models.PositiveSmallIntegerField(default=3)
    backoff_ms = models.PositiveIntegerField(default=1000)
    next_attempt_at = models.DateTimeField(null=True, blank=True)      # set while a retry is scheduled
    stalled_count = models.PositiveSmallIntegerField(default=0)      # redeliveries after a lost worker

    error = models.TextField(blank=True, default="")                  # newest failure first
    outputs = models.JSONField(default=dict, blank=True)               # published keys/urls

    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["created_at"]

    def __str__(self):
        return f"Job {self.id} (reel {self.correlation_id}, {self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in (self.Status.COMPLETED, self.Status.FAILED)

    @property
    def attempts_left(self) -> int:
        return max(0, self.max_attempts - self.attempts_made)
