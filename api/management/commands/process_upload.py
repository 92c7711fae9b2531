from django.core.management.base import BaseCommand, CommandError

from api.errors import PipelineError
from api.pipeline import IngestOrchestrator, StorageEvent


class Command(BaseCommand):
    help = "Run the ingest pipeline for one uploaded object, synchronously."

    def add_arguments(self, parser):
        parser.add_argument("key", help="Object key, e.g. uploads/clip.mp4")
        parser.add_argument("--content-type", default="video/mp4")

    def handle(self, *args, **options):
        event = StorageEvent(path=options["key"], content_type=options["content_type"])
        try:
            record = IngestOrchestrator().handle(event)
        except PipelineError as e:
            raise CommandError(f"{e.stage}: {e}") from e
        if record is None:
            self.stdout.write(self.style.WARNING(f"{options['key']} was not admitted; see log for the reason"))
            return
        self.stdout.write(self.style.SUCCESS(f"{record.id}: {record.playlist_url} ({record.segment_count} segments)"))
