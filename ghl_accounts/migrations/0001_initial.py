from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='GHLAuthCredentials',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('scope_type', models.CharField(choices=[('Agency', 'Agency'), ('Location', 'Location')], max_length=20)),
                ('scope_id', models.CharField(max_length=255)),
                ('company_id', models.CharField(blank=True, max_length=255, null=True)),
                ('access_token', models.TextField(blank=True, default='')),
                ('refresh_token', models.TextField(blank=True, default='')),
                ('expires_at', models.DateTimeField(blank=True, null=True)),
                ('scope', models.TextField(blank=True, null=True)),
                ('user_id', models.CharField(blank=True, max_length=255, null=True)),
                ('user_type', models.CharField(blank=True, max_length=50, null=True)),
                ('custom_menu_id', models.CharField(blank=True, max_length=255, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'GHL Auth Credentials',
                'verbose_name_plural': 'GHL Auth Credentials',
                'db_table': 'ghl_auth_credentials',
            },
        ),
        migrations.CreateModel(
            name='LocationSummary',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('location_id', models.CharField(max_length=255, unique=True)),
                ('agency_id', models.CharField(db_index=True, max_length=255)),
                ('display_name', models.CharField(blank=True, max_length=255, null=True)),
                ('is_installed', models.BooleanField(default=False)),
                ('installed_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Location Summary',
                'verbose_name_plural': 'Location Summaries',
                'db_table': 'ghl_location_summaries',
                'ordering': ['location_id'],
            },
        ),
        migrations.AddConstraint(
            model_name='ghlauthcredentials',
            constraint=models.UniqueConstraint(fields=('scope_type', 'scope_id'), name='uniq_ghl_credentials_scope'),
        ),
    ]
