from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Video",
            fields=[
                ("id", models.CharField(max_length=64, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("playlist_url", models.URLField(max_length=1024)),
                ("original_path", models.CharField(max_length=512)),
                ("segment_count", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=[("processed", "Processed")], default="processed", max_length=16
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "ordering": ["-created_at", "-id"],
            },
        ),
    ]
