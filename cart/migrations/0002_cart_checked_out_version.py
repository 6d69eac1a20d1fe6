from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("cart", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="cart",
            name="checked_out_version",
            field=models.PositiveIntegerField(blank=True, null=True),
        ),
    ]
