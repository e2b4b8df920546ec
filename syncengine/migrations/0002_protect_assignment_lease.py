"""
Leases protect their assignment and job from deletion.
"""

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("syncengine", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="assignmentlease",
            name="assignment",
            field=models.OneToOneField(
                on_delete=django.db.models.deletion.PROTECT,
                primary_key=True,
                related_name="lease",
                serialize=False,
                to="syncengine.assignment",
            ),
        ),
        migrations.AlterField(
            model_name="assignmentlease",
            name="job",
            field=models.OneToOneField(
                on_delete=django.db.models.deletion.PROTECT,
                related_name="lease",
                to="syncengine.extractionjob",
            ),
        ),
    ]
