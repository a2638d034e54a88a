from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("gasless", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="sponsoredtransaction",
            name="submitted_signature",
            field=models.CharField(blank=True, max_length=128, null=True),
        ),
    ]
