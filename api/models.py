from django.db import models

from .errors import CatalogError


class Video(models.Model):
    """One published HLS artifact. Written once, read-only afterwards."""

    class Status(models.TextChoices):
        PROCESSED = "processed"

    id = models.CharField(primary_key=True, max_length=64)          # artifact id, e.g. video_1700000000000_ab12cd
    name = models.CharField(max_length=255)
    playlist_url = models.URLField(max_length=1024)
    original_path = models.CharField(max_length=512)               # key under the incoming prefix
    segment_count = models.PositiveIntegerField()                  # files actually uploaded
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PROCESSED)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise CatalogError(f"catalog record {self.pk} is immutable")
        kwargs["force_insert"] = True
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.name} ({self.id})"
