from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("hls", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="job",
            name="stalled_count",
            field=models.PositiveSmallIntegerField(default=0),
        ),
    ]
