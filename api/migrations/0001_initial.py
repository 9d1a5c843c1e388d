from django.db import migrations, models
import django.db.models.deletion


LISTING_FIELDS = [
    ('title', models.CharField(max_length=255)),
    ('type', models.CharField(choices=[('house', 'Casa'), ('apartment', 'Apartamento'), ('land', 'Terreno'), ('commercial', 'Imóvel Comercial')], default='house', max_length=20)),
    ('price', models.DecimalField(decimal_places=2, max_digits=14)),
    ('original_price', models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
    ('discount', models.IntegerField(blank=True, null=True)),
    ('address_street', models.CharField(blank=True, max_length=255)),
    ('address_neighborhood', models.CharField(blank=True, max_length=120)),
    ('address_city', models.CharField(blank=True, max_length=120)),
    ('address_state', models.CharField(blank=True, max_length=2)),
    ('address_zipcode', models.CharField(blank=True, max_length=10)),
    ('bedrooms', models.IntegerField(blank=True, null=True)),
    ('bathrooms', models.IntegerField(blank=True, null=True)),
    ('parking_spaces', models.IntegerField(blank=True, null=True)),
    ('area', models.DecimalField(decimal_places=2, default=0, max_digits=12)),
    ('description', models.TextField(blank=True)),
    ('images', models.JSONField(blank=True, default=list)),
    ('accepts_fgts', models.BooleanField(default=False)),
    ('accepts_financing', models.BooleanField(default=False)),
    ('modality', models.CharField(blank=True, max_length=100)),
    ('source_url', models.URLField(blank=True, max_length=1000)),
    ('auction_date', models.DateField(blank=True, null=True)),
]


def listing_fields():
    return [(name, field.clone()) for name, field in LISTING_FIELDS]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ScrapingConfig',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('states', models.JSONField(blank=True, default=list)),
                ('property_types', models.JSONField(blank=True, default=list)),
                ('modalities', models.JSONField(blank=True, default=list)),
                ('min_price', models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ('max_price', models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ('seed_urls', models.JSONField(blank=True, default=list)),
                ('is_active', models.BooleanField(default=True)),
                ('last_run_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'Scraping config',
                'verbose_name_plural': 'Scraping configs',
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='StagingProperty',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                *listing_fields(),
                ('external_id', models.CharField(max_length=100, unique=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('imported', 'Imported'), ('ignored', 'Ignored')], db_index=True, default='pending', max_length=20)),
                ('raw_data', models.JSONField(blank=True, default=dict)),
                ('scraped_at', models.DateTimeField(auto_now_add=True)),
                ('reviewed_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'verbose_name': 'Staged property',
                'verbose_name_plural': 'Staged properties',
                'ordering': ['-scraped_at', '-id'],
            },
        ),
        migrations.CreateModel(
            name='Property',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                *listing_fields(),
                ('external_id', models.CharField(blank=True, db_index=True, max_length=100, null=True)),
                ('status', models.CharField(choices=[('available', 'Available'), ('sold', 'Sold')], db_index=True, default='available', max_length=20)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('sold_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'verbose_name': 'Property',
                'verbose_name_plural': 'Properties',
                'ordering': ['-created_at', '-id'],
            },
        ),
        migrations.CreateModel(
            name='ScrapingLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('running', 'Running'), ('completed', 'Completed'), ('failed', 'Failed')], default='running', max_length=20)),
                ('properties_found', models.IntegerField(default=0)),
                ('properties_new', models.IntegerField(default=0)),
                ('error_message', models.TextField(blank=True, null=True)),
                ('started_at', models.DateTimeField(auto_now_add=True)),
                ('finished_at', models.DateTimeField(blank=True, null=True)),
                ('config', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='logs', to='api.scrapingconfig')),
            ],
            options={
                'verbose_name': 'Scraping log',
                'verbose_name_plural': 'Scraping logs',
                'ordering': ['-started_at', '-id'],
            },
        ),
    ]
