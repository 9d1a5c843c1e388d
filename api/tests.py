"""
Tests for the staging, catalog and scraping API.
"""

from decimal import Decimal
from io import StringIO
from unittest.mock import patch, MagicMock

from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError
from django.db.models import QuerySet
from django.test import TestCase
from rest_framework.test import APITestCase
from rest_framework import status

from api.models import Property, ScrapingConfig, ScrapingLog, StagingProperty
from api.models import PropertyType as CatalogType
from api.serializers import PropertySerializer
from api.staging import (
    ConfigNotFound,
    InvalidTransition,
    PromotionInconsistency,
    PropertyNotFound,
    StagingNotFound,
    StagingService,
)
from api.store import PropertyStore, RunAlreadyFinished, property_store
from api.tasks import execute_crawl, resolve_states, run_scraping
from api.uploads import ImageStore
from core.locks import RunInProgress, is_locked, run_lock
from core.throttle import Pacer
from core.user_agent_manager import FALLBACK_USER_AGENTS, UserAgentManager
from scrapers.base import (
    DuplicateExternalId,
    ExtractionFailed,
    FetchFailed,
    InsufficientContent,
    InvalidImage,
    ServiceUnavailable,
    SourceBlocked,
    UnparsableResponse,
)
from scrapers.config import CrawlSettings
from scrapers.drafts import Address, PropertyDraft, PropertyType
from scrapers.importers import ImportResult
from scrapers.listing_scraper import CrawlResult, ListingCrawler
from scrapers.tests import SEED, FakeFetcher, detail_html, detail_url, listing_html


def make_draft(external_id, price=Decimal('150000'), **kwargs):
    values = dict(
        title=f'Casa {external_id}',
        type=PropertyType.HOUSE,
        original_price=Decimal('200000'),
        discount=25,
        address=Address(neighborhood='Centro', city='Fortaleza', state='CE'),
        bedrooms=2,
        images=['https://cdn.example.com/casa.jpg'],
        source_url='https://www.leilaoimovel.com.br/imovel/casa',
    )
    values.update(kwargs)
    return PropertyDraft(external_id=external_id, price=price, **values)


def make_property(**kwargs):
    values = dict(title='Casa no Centro', price=Decimal('150000'), address_city='Fortaleza', address_state='CE')
    values.update(kwargs)
    return Property.objects.create(**values)


class PropertySerializerTests(TestCase):
    """Tests for manual catalog entry validation."""

    def test_valid(self):
        """Test a manual entry with the required fields."""
        data = {'title': 'Apartamento 2 quartos', 'type': 'apartment', 'price': '180000.00', 'address_state': 'pe'}
        serializer = PropertySerializer(data=data)
        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertEqual(serializer.validated_data['address_state'], 'PE')

    def test_price_must_be_positive(self):
        """Test that a zero price is rejected."""
        serializer = PropertySerializer(data={'title': 'Casa', 'price': '0'})
        self.assertFalse(serializer.is_valid())
        self.assertIn('price', serializer.errors)

    def test_state_must_be_two_letters(self):
        """Test that a state name is rejected."""
        serializer = PropertySerializer(data={'title': 'Casa', 'price': '100000', 'address_state': 'Ceará'})
        self.assertFalse(serializer.is_valid())

    def test_images_capped(self):
        """Test that at most ten images are kept."""
        images = [f'https://cdn.example.com/{n}.jpg' for n in range(12)]
        serializer = PropertySerializer(data={'title': 'Casa', 'price': '100000', 'images': images})
        self.assertTrue(serializer.is_valid(), serializer.errors)
        self.assertEqual(len(serializer.validated_data['images']), 10)


class PropertyStoreTests(TestCase):
    """Tests for the ORM-backed store."""

    def setUp(self):
        self.store = PropertyStore()
        self.config = ScrapingConfig.objects.create(name='Nordeste', states=['CE'])

    def test_find_by_external_ids_covers_staging_and_catalog(self):
        """Test that known ids come from both tables."""
        self.store.insert_staging(make_draft('ext-1'))
        make_property(external_id='ext-2')

        known = self.store.find_by_external_ids(['ext-1', 'ext-2', 'ext-3'])

        self.assertEqual(known, {'ext-1', 'ext-2'})

    def test_insert_staging_keeps_draft(self):
        """Test that the staged row is pending and keeps the draft."""
        staging_id = self.store.insert_staging(make_draft('ext-1', auction_date='2025-03-15'))

        record = StagingProperty.objects.get(pk=staging_id)
        self.assertEqual(record.status, StagingProperty.Status.PENDING)
        self.assertEqual(record.address_city, 'Fortaleza')
        self.assertEqual(record.raw_data['draft']['price'], '150000')
        self.assertEqual(str(record.auction_date), '2025-03-15')

    def test_run_finishes_once(self):
        """Test that a run cannot be finished twice."""
        run_id = self.store.log_run_start(self.config.pk)
        self.store.log_run_finish(run_id, ScrapingLog.Status.COMPLETED, 10, 4)

        with self.assertRaises(RunAlreadyFinished):
            self.store.log_run_finish(run_id, ScrapingLog.Status.FAILED, 0, 0, 'late')

        log = ScrapingLog.objects.get(pk=run_id)
        self.assertEqual(log.status, ScrapingLog.Status.COMPLETED)
        self.assertEqual((log.properties_found, log.properties_new), (10, 4))
        self.assertIsNotNone(log.finished_at)

    def test_list_catalog_filters(self):
        """Test state, price and search filters."""
        make_property(title='Casa em Fortaleza', price=Decimal('90000'))
        make_property(title='Apartamento', price=Decimal('250000'), address_city='Recife', address_state='PE')
        make_property(title='Terreno', price=Decimal('150000'), address_city='Caucaia')

        self.assertEqual(len(self.store.list_catalog({'state': 'ce'})), 2)
        self.assertEqual(len(self.store.list_catalog({'min_price': Decimal(100000), 'max_price': None})), 2)
        self.assertEqual(
            [p.title for p in self.store.list_catalog({'search': 'recife'})], ['Apartamento']
        )

    def test_catalog_queryset_is_lazy(self):
        """Test that browsing pages the queryset in the database."""
        for n in range(5):
            make_property(title=f'Casa {n}')

        queryset = self.store.catalog_queryset()

        self.assertIsInstance(queryset, QuerySet)
        with self.assertNumQueries(1):
            page = list(queryset[2:4])
        self.assertEqual([p.title for p in page], ['Casa 2', 'Casa 1'])

    def test_model_types_match_draft_types(self):
        """Test that catalog choices and draft types share values and labels."""
        self.assertEqual(
            [(t.value, t.label) for t in CatalogType],
            [(t.value, t.label) for t in PropertyType],
        )


class StagingServiceTests(TestCase):
    """Tests for the review state machine and catalog promotion."""

    def setUp(self):
        self.store = PropertyStore()
        self.service = StagingService(self.store)

    def stage(self, external_id):
        return self.store.insert_staging(make_draft(external_id))

    def test_import_promotes_pending(self):
        """Test that import copies the draft and marks it imported."""
        staging_id = self.stage('ext-1')

        property_id = self.service.import_one(staging_id)

        record = Property.objects.get(pk=property_id)
        self.assertEqual(record.external_id, 'ext-1')
        self.assertEqual(record.status, Property.Status.AVAILABLE)
        self.assertEqual(record.price, Decimal('150000'))
        self.assertEqual(record.images, ['https://cdn.example.com/casa.jpg'])
        staged = StagingProperty.objects.get(pk=staging_id)
        self.assertEqual(staged.status, StagingProperty.Status.IMPORTED)
        self.assertIsNotNone(staged.reviewed_at)

    def test_import_twice_is_rejected(self):
        """Test that an imported draft cannot be imported again."""
        staging_id = self.stage('ext-1')
        self.service.import_one(staging_id)

        with self.assertRaises(InvalidTransition):
            self.service.import_one(staging_id)
        self.assertEqual(Property.objects.count(), 1)

    def test_ignored_cannot_be_imported(self):
        """Test that ignore is final."""
        staging_id = self.stage('ext-1')
        self.service.ignore(staging_id)

        with self.assertRaises(InvalidTransition):
            self.service.import_one(staging_id)
        with self.assertRaises(InvalidTransition):
            self.service.ignore(staging_id)
        self.assertEqual(Property.objects.count(), 0)

    def test_missing_record(self):
        """Test that unknown ids raise StagingNotFound."""
        with self.assertRaises(StagingNotFound):
            self.service.import_one(999)
        with self.assertRaises(StagingNotFound):
            self.service.delete(999)

    def test_delete_in_any_status(self):
        """Test that reviewed drafts can still be deleted."""
        staging_id = self.stage('ext-1')
        self.service.ignore(staging_id)

        self.service.delete(staging_id)

        self.assertFalse(StagingProperty.objects.filter(pk=staging_id).exists())

    def test_bulk_import_continues_past_failures(self):
        """Test that one failing id does not stop the batch."""
        ids = [self.stage(f'ext-{n}') for n in range(1, 6)]
        insert_catalog = self.store.insert_catalog

        def flaky_insert(fields):
            if fields['external_id'] == 'ext-3':
                raise DatabaseError('disk full')
            return insert_catalog(fields)

        with patch.object(self.store, 'insert_catalog', side_effect=flaky_insert):
            result = self.service.bulk_import(ids)

        self.assertEqual(result['imported'], 4)
        self.assertEqual(result['errors'], 1)
        self.assertEqual(result['failed_ids'], [ids[2]])
        self.assertEqual(len(result['property_ids']), 4)
        self.assertEqual(StagingProperty.objects.get(pk=ids[2]).status, StagingProperty.Status.PENDING)
        self.assertEqual(Property.objects.count(), 4)

    def test_promotion_inconsistency(self):
        """Test that a failed status update after the catalog insert is reported."""
        staging_id = self.stage('ext-1')

        with patch.object(self.store, 'update_staging_status', side_effect=DatabaseError('database is locked')):
            with self.assertRaises(PromotionInconsistency) as ctx:
                self.service.import_one(staging_id)

        self.assertEqual(ctx.exception.staging_id, staging_id)
        self.assertTrue(Property.objects.filter(pk=ctx.exception.property_id).exists())
        self.assertEqual(StagingProperty.objects.get(pk=staging_id).status, StagingProperty.Status.PENDING)

    def test_promotion_inconsistency_when_record_changed(self):
        """Test that a concurrent review between read and update is reported."""
        staging_id = self.stage('ext-1')

        with patch.object(self.store, 'update_staging_status', return_value=0):
            result = self.service.bulk_import([staging_id])

        self.assertEqual(result['imported'], 0)
        self.assertEqual(result['failed_ids'], [staging_id])

    def test_list_staging_flags_already_imported(self):
        """Test the already-imported warning flag."""
        first = self.stage('ext-1')
        self.service.import_one(first)
        make_property(external_id='ext-2')
        self.stage('ext-2')
        self.stage('ext-3')

        flags = {record.external_id: record.already_imported for record in self.service.list_staging()}

        self.assertEqual(flags, {'ext-1': True, 'ext-2': True, 'ext-3': False})
        pending = self.service.list_staging(StagingProperty.Status.PENDING)
        self.assertEqual({record.external_id for record in pending}, {'ext-2', 'ext-3'})

    def test_sold_available_cycle(self):
        """Test that sold sets sold_at and available clears it."""
        record = make_property()

        sold = self.service.update_property_status(record.pk, Property.Status.SOLD)
        self.assertEqual(sold.status, Property.Status.SOLD)
        self.assertIsNotNone(sold.sold_at)

        unchanged = self.service.update_property_status(record.pk, Property.Status.SOLD)
        self.assertEqual(unchanged.sold_at, sold.sold_at)

        available = self.service.update_property_status(record.pk, Property.Status.AVAILABLE)
        self.assertIsNone(available.sold_at)

        sold_again = self.service.update_property_status(record.pk, Property.Status.SOLD)
        self.assertIsNotNone(sold_again.sold_at)

    def test_invalid_property_status(self):
        """Test status validation and missing properties."""
        record = make_property()
        with self.assertRaises(ValueError):
            self.service.update_property_status(record.pk, 'reserved')
        with self.assertRaises(PropertyNotFound):
            self.service.update_property_status(999, Property.Status.SOLD)


class RunLockTests(TestCase):
    """Tests for the per-config run lock."""

    def setUp(self):
        cache.clear()

    def test_second_run_is_rejected(self):
        """Test that a held lock blocks another run of the same config."""
        with run_lock(1):
            self.assertTrue(is_locked(1))
            with self.assertRaises(RunInProgress):
                with run_lock(1):
                    pass
            with run_lock(2):
                pass
        self.assertFalse(is_locked(1))

    def test_released_on_error(self):
        """Test that the lock is freed when the run raises."""
        with self.assertRaises(RuntimeError):
            with run_lock(1):
                raise RuntimeError('boom')
        self.assertFalse(is_locked(1))


class ExecuteCrawlTests(TestCase):
    """Tests for the crawl entry point."""

    def setUp(self):
        cache.clear()
        self.store = PropertyStore()
        self.settings = CrawlSettings(seed_urls=[SEED], request_delay=0, default_states=['PE'])
        self.config = ScrapingConfig.objects.create(name='Ceará', states=['ce'])

    def test_resolve_states(self):
        """Test explicit states, then config states, then defaults."""
        self.assertEqual(resolve_states(['rn'], ['CE'], ['PE']), ['RN'])
        self.assertEqual(resolve_states(None, ['ce'], ['PE']), ['CE'])
        self.assertEqual(resolve_states([], [], ['PE', 'RN']), ['PE', 'RN'])
        self.assertEqual(resolve_states(None, None, []), [])

    def test_unknown_config(self):
        """Test that an unknown config is rejected before a run is logged."""
        with self.assertRaises(ConfigNotFound):
            execute_crawl(999, store=self.store, crawl_settings=self.settings, crawler=MagicMock())
        self.assertEqual(ScrapingLog.objects.count(), 0)

    def test_passes_config_to_crawler(self):
        """Test that config states and seeds reach the crawler."""
        self.config.seed_urls = ['https://www.leilaoimovel.com.br/imoveis/caixa/ce']
        self.config.save()
        crawler = MagicMock()
        crawler.crawl.return_value = CrawlResult(run_id=1, status='completed')

        execute_crawl(self.config.pk, store=self.store, crawl_settings=self.settings, crawler=crawler)

        crawler.crawl.assert_called_once_with(
            self.config.pk, seeds=['https://www.leilaoimovel.com.br/imoveis/caixa/ce'], states=['CE']
        )
        self.config.refresh_from_db()
        self.assertIsNotNone(self.config.last_run_at)

    def test_manual_url(self):
        """Test that a URL run goes through crawl_url."""
        crawler = MagicMock()
        crawler.crawl_url.return_value = CrawlResult(run_id=1, status='completed', outcome='detail')

        execute_crawl(self.config.pk, states=['RN'], url=detail_url(1), store=self.store,
                      crawl_settings=self.settings, crawler=crawler)

        crawler.crawl_url.assert_called_once_with(self.config.pk, detail_url(1), states=['RN'])
        crawler.crawl.assert_not_called()

    def test_locked_config(self):
        """Test that a concurrent run for the same config is rejected."""
        crawler = MagicMock()
        with run_lock(self.config.pk):
            with self.assertRaises(RunInProgress):
                execute_crawl(self.config.pk, store=self.store, crawl_settings=self.settings, crawler=crawler)
        crawler.crawl.assert_not_called()

    def make_crawler(self, pages):
        return ListingCrawler(self.store, fetcher=FakeFetcher(pages), crawl_settings=self.settings, pacer=Pacer(0))

    def test_crawl_stages_into_database(self):
        """Test a full run against the database, then a repeat run."""
        pages = {SEED: listing_html(range(1, 6))}
        pages.update({detail_url(n): detail_html(n) for n in range(1, 6)})

        first = execute_crawl(self.config.pk, store=self.store, crawl_settings=self.settings,
                              crawler=self.make_crawler(pages))
        second = execute_crawl(self.config.pk, store=self.store, crawl_settings=self.settings,
                               crawler=self.make_crawler(pages))

        self.assertEqual((first.found, first.new), (5, 5))
        self.assertEqual((second.found, second.new), (5, 0))
        self.assertEqual(StagingProperty.objects.count(), 5)
        logs = ScrapingLog.objects.order_by('id')
        self.assertEqual([log.status for log in logs], ['completed', 'completed'])
        self.assertEqual([log.properties_new for log in logs], [5, 0])
        record = StagingProperty.objects.get(external_id='1444001-1')
        self.assertEqual(record.address_state, 'CE')
        self.assertEqual(record.discount, 24)

    def test_unreachable_source_logged_as_failed(self):
        """Test that a run with no reachable page is logged as failed."""
        result = execute_crawl(self.config.pk, store=self.store, crawl_settings=self.settings,
                               crawler=self.make_crawler({}))

        self.assertEqual(result.status, 'failed')
        log = ScrapingLog.objects.get(pk=result.run_id)
        self.assertEqual(log.status, ScrapingLog.Status.FAILED)
        self.assertTrue(log.error_message)
        self.assertFalse(is_locked(self.config.pk))

    @patch('api.tasks.execute_crawl')
    def test_celery_task_returns_dict(self, mock_execute):
        """Test the async task wrapper."""
        mock_execute.return_value = CrawlResult(run_id=7, status='completed', found=3, new=1)

        result = run_scraping(self.config.pk, states=['CE'])

        self.assertEqual(result['run_id'], 7)
        self.assertEqual(result['new'], 1)
        mock_execute.assert_called_once_with(self.config.pk, states=['CE'], url=None)


class CrawlCommandTests(TestCase):
    """Tests for the crawl management command."""

    def test_unknown_config(self):
        """Test that an unknown config fails the command."""
        with self.assertRaises(CommandError):
            call_command('crawl', 999)

    @patch('api.management.commands.crawl.execute_crawl')
    def test_success(self, mock_execute):
        """Test the success summary."""
        mock_execute.return_value = CrawlResult(run_id=3, status='completed', found=5, new=2)
        out = StringIO()

        call_command('crawl', 1, '--states', 'CE', 'PE', stdout=out)

        self.assertIn('5 found, 2 new', out.getvalue())
        mock_execute.assert_called_once_with(1, states=['CE', 'PE'], url=None)

    @patch('api.management.commands.crawl.execute_crawl')
    def test_failed_run(self, mock_execute):
        """Test that a failed run fails the command."""
        mock_execute.return_value = CrawlResult(run_id=3, status='failed', error_message='unreachable')
        with self.assertRaises(CommandError):
            call_command('crawl', 1)


class ImageStoreTests(TestCase):
    """Tests for image uploads."""

    def upload(self, content=b'\x89PNG image bytes', content_type='image/png', name='casa.png'):
        return SimpleUploadedFile(name, content, content_type=content_type)

    def test_put(self):
        """Test that images are saved under the prefix."""
        storage = MagicMock()
        storage.save.return_value = 'property-images/abc.png'
        storage.url.return_value = '/media/property-images/abc.png'

        result = ImageStore(storage=storage).put(self.upload())

        self.assertEqual(result, {'url': '/media/property-images/abc.png', 'stored': True})
        name = storage.save.call_args.args[0]
        self.assertTrue(name.startswith('property-images/'))
        self.assertTrue(name.endswith('.png'))

    def test_rejects_non_image(self):
        """Test that other file types are rejected."""
        with self.assertRaises(InvalidImage):
            ImageStore(storage=MagicMock()).put(self.upload(b'hello', 'text/plain', 'notes.txt'))

    def test_rejects_large_image(self):
        """Test the size cap."""
        with self.assertRaises(InvalidImage):
            ImageStore(storage=MagicMock(), max_bytes=4).put(self.upload())

    def test_inline_fallback(self):
        """Test the data URL fallback when storage fails."""
        storage = MagicMock()
        storage.save.side_effect = OSError('read-only file system')

        result = ImageStore(storage=storage).put(self.upload())

        self.assertFalse(result['stored'])
        self.assertTrue(result['url'].startswith('data:image/png;base64,'))


class UserAgentManagerTests(TestCase):
    """Tests for the user-agent manager."""

    def test_configured_agents(self):
        """Test that configured agents are used first."""
        manager = UserAgentManager(['agent-a'])
        self.assertEqual(manager.get_random_user_agent(), 'agent-a')

    @patch('fake_useragent.UserAgent', side_effect=Exception('offline'))
    def test_fallback_agents(self, mock_user_agent):
        """Test the fallback list when fake-useragent is unavailable."""
        manager = UserAgentManager([])
        self.assertIn(manager.get_random_user_agent(), FALLBACK_USER_AGENTS)


class ImportEndpointTests(APITestCase):
    """Tests for the URL and screenshot import endpoints."""

    def result(self, method='heuristic', **kwargs):
        return ImportResult(draft=make_draft('url-abc'), method=method, content_preview='# Casa', **kwargs)

    @patch('api.views.url_importer')
    def test_import_url(self, mock_importer):
        """Test a preview import."""
        mock_importer.import_url.return_value = self.result()

        response = self.client.post('/api/import/url', {'url': 'example.com/casa'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['external_id'], 'url-abc')
        self.assertEqual(response.data['method'], 'heuristic')
        self.assertEqual(response.data['raw_content'], '# Casa')
        mock_importer.import_url.assert_called_once_with('example.com/casa', store=None)

    @patch('api.views.url_importer')
    def test_import_url_and_stage(self, mock_importer):
        """Test that stage=true passes the store."""
        mock_importer.import_url.return_value = self.result(staging_id=12)

        response = self.client.post('/api/import/url', {'url': 'https://example.com/casa', 'stage': True},
                                    format='json')

        self.assertEqual(response.data['staging_id'], 12)
        mock_importer.import_url.assert_called_once_with('https://example.com/casa', store=property_store)

    def test_import_url_missing_url(self):
        """Test import without a URL."""
        response = self.client.post('/api/import/url', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('api.views.url_importer')
    def test_import_url_errors(self, mock_importer):
        """Test the error status codes of the URL import."""
        cases = [
            (InsufficientContent('too little content', length=20), status.HTTP_422_UNPROCESSABLE_ENTITY),
            (FetchFailed('timed out', url='https://example.com'), status.HTTP_502_BAD_GATEWAY),
            (SourceBlocked('blocked', status_code=403), status.HTTP_503_SERVICE_UNAVAILABLE),
            (DuplicateExternalId('url-abc'), status.HTTP_409_CONFLICT),
        ]
        for error, expected in cases:
            mock_importer.import_url.side_effect = error
            response = self.client.post('/api/import/url', {'url': 'https://example.com'}, format='json')
            self.assertEqual(response.status_code, expected, type(error).__name__)
            self.assertEqual(response.data['status_code'], expected)

    @patch('api.views.url_importer')
    def test_extraction_failed_returns_partial_draft(self, mock_importer):
        """Test that the partial draft is returned for diagnostics."""
        mock_importer.import_url.side_effect = ExtractionFailed(
            'No resolvable price', draft=make_draft('url-abc', price=None)
        )

        response = self.client.post('/api/import/url', {'url': 'https://example.com'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(response.data['data']['external_id'], 'url-abc')
        self.assertIsNone(response.data['data']['price'])

    @patch('api.views.screenshot_importer')
    def test_import_screenshot(self, mock_importer):
        """Test a screenshot import from a data URL."""
        mock_importer.import_screenshot.return_value = self.result(method='ai_image')

        response = self.client.post(
            '/api/import/screenshot', {'image_data_url': 'data:image/png;base64,AAAA'}, format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['method'], 'ai_image')

    @patch('api.views.screenshot_importer')
    def test_import_screenshot_file(self, mock_importer):
        """Test a screenshot import from a multipart upload."""
        mock_importer.import_screenshot.return_value = self.result(method='ai_image')
        image = SimpleUploadedFile('tela.png', b'\x89PNG bytes', content_type='image/png')

        response = self.client.post('/api/import/screenshot', {'image': image}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        args, kwargs = mock_importer.import_screenshot.call_args
        self.assertEqual(args[0], b'\x89PNG bytes')
        self.assertEqual(kwargs['content_type'], 'image/png')

    def test_import_screenshot_missing_image(self):
        """Test screenshot import without an image."""
        response = self.client.post('/api/import/screenshot', {'source_url': 'https://example.com'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('api.views.screenshot_importer')
    def test_import_screenshot_errors(self, mock_importer):
        """Test the error status codes of the screenshot import."""
        cases = [
            (InvalidImage('Only images are accepted'), status.HTTP_400_BAD_REQUEST),
            (ServiceUnavailable('not configured'), status.HTTP_503_SERVICE_UNAVAILABLE),
            (UnparsableResponse('not JSON', raw_content='desculpe'), status.HTTP_422_UNPROCESSABLE_ENTITY),
        ]
        for error, expected in cases:
            mock_importer.import_screenshot.side_effect = error
            response = self.client.post(
                '/api/import/screenshot', {'image_data_url': 'data:image/png;base64,AAAA'}, format='json'
            )
            self.assertEqual(response.status_code, expected, type(error).__name__)

        self.assertEqual(response.data['raw_content'], 'desculpe')


class StagingEndpointTests(APITestCase):
    """Tests for the staging review endpoints."""

    def setUp(self):
        self.ids = [property_store.insert_staging(make_draft(f'ext-{n}')) for n in range(1, 4)]

    def test_list(self):
        """Test listing staged properties."""
        make_property(external_id='ext-1')

        response = self.client.get('/api/staging')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 3)
        flags = {item['external_id']: item['already_imported'] for item in response.data}
        self.assertTrue(flags['ext-1'])
        self.assertFalse(flags['ext-2'])

    def test_import_and_conflict(self):
        """Test import, then a second import of the same record."""
        response = self.client.post(f'/api/staging/{self.ids[0]}/import')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(Property.objects.filter(pk=response.data['property_id']).exists())

        response = self.client.post(f'/api/staging/{self.ids[0]}/import')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'Conflict')

    def test_ignore(self):
        """Test ignoring a staged property."""
        response = self.client.post(f'/api/staging/{self.ids[0]}/ignore')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        response = self.client.post(f'/api/staging/{self.ids[0]}/import')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_not_found(self):
        """Test actions on an unknown record."""
        response = self.client.post('/api/staging/999/import')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'Not Found')

        response = self.client.delete('/api/staging/999')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_promotion_inconsistency(self):
        """Test that a half-finished promotion is a 500 naming both records."""
        with patch.object(property_store, 'update_staging_status', side_effect=DatabaseError('database is locked')):
            response = self.client.post(f'/api/staging/{self.ids[0]}/import')

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['staging_id'], self.ids[0])
        self.assertIsNotNone(response.data['property_id'])

    def test_bulk_import(self):
        """Test bulk import with one already reviewed record."""
        self.client.post(f'/api/staging/{self.ids[1]}/ignore')

        response = self.client.post('/api/staging/bulk-import', {'ids': self.ids}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['imported'], 2)
        self.assertEqual(response.data['errors'], 1)
        self.assertEqual(response.data['failed_ids'], [self.ids[1]])

    def test_bulk_import_requires_ids(self):
        """Test bulk import with an empty list."""
        response = self.client.post('/api/staging/bulk-import', {'ids': []}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_delete_bulk_and_clear(self):
        """Test single, bulk and full deletion."""
        response = self.client.delete(f'/api/staging/{self.ids[0]}')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        response = self.client.post('/api/staging/bulk-delete', {'ids': [self.ids[1], 999]}, format='json')
        self.assertEqual(response.data['deleted'], 1)

        response = self.client.post('/api/staging/clear')
        self.assertEqual(response.data['deleted'], 1)
        self.assertEqual(StagingProperty.objects.count(), 0)


class PropertyEndpointTests(APITestCase):
    """Tests for the catalog endpoints."""

    def test_create(self):
        """Test manual entry."""
        data = {'title': 'Casa no Centro', 'type': 'house', 'price': '150000', 'address_state': 'ce'}

        response = self.client.post('/api/properties', data, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'available')
        self.assertEqual(response.data['address_state'], 'CE')

    def test_create_invalid(self):
        """Test manual entry without a price."""
        response = self.client.post('/api/properties', {'title': 'Casa'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_filters_and_pagination(self):
        """Test filters and page metadata."""
        make_property(price=Decimal('90000'))
        make_property(price=Decimal('150000'))
        make_property(price=Decimal('180000'), address_city='Recife', address_state='PE')

        response = self.client.get('/api/properties', {'state': 'CE'})
        self.assertEqual(response.data['pagination']['total_results'], 2)

        response = self.client.get('/api/properties', {'price_range': '100000-200000', 'per_page': 1})
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['pagination']['total_results'], 2)
        self.assertEqual(response.data['pagination']['total_pages'], 2)
        self.assertTrue(response.data['pagination']['has_next'])

    def test_invalid_price_range(self):
        """Test an unknown price range."""
        response = self.client.get('/api/properties', {'price_range': 'cheap'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_detail_and_delete(self):
        """Test detail, delete and missing properties."""
        record = make_property()

        response = self.client.get(f'/api/properties/{record.pk}')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['title'], 'Casa no Centro')

        response = self.client.delete(f'/api/properties/{record.pk}')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        response = self.client.get(f'/api/properties/{record.pk}')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_status(self):
        """Test marking a property sold and available again."""
        record = make_property()

        response = self.client.post(f'/api/properties/{record.pk}/status', {'status': 'sold'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNotNone(response.data['sold_at'])

        response = self.client.post(f'/api/properties/{record.pk}/status', {'status': 'available'}, format='json')
        self.assertIsNone(response.data['sold_at'])

        response = self.client.post(f'/api/properties/{record.pk}/status', {'status': 'reserved'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_clear(self):
        """Test clearing the catalog."""
        make_property()
        make_property()

        response = self.client.post('/api/properties/clear')

        self.assertEqual(response.data['deleted'], 2)
        self.assertEqual(Property.objects.count(), 0)

    def test_upload_rejects_non_image(self):
        """Test uploading a text file."""
        upload = SimpleUploadedFile('notes.txt', b'hello', content_type='text/plain')
        response = self.client.post('/api/uploads/images', {'file': upload}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @patch('api.views.image_store')
    def test_upload(self, mock_store):
        """Test uploading an image."""
        mock_store.put.return_value = {'url': '/media/property-images/abc.png', 'stored': True}
        upload = SimpleUploadedFile('casa.png', b'\x89PNG bytes', content_type='image/png')

        response = self.client.post('/api/uploads/images', {'file': upload}, format='multipart')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['url'], '/media/property-images/abc.png')


class ScrapingEndpointTests(APITestCase):
    """Tests for the scraping endpoints."""

    def setUp(self):
        self.config = ScrapingConfig.objects.create(name='Nordeste', states=['CE', 'PE'])

    @patch('api.views.execute_crawl')
    def test_run(self, mock_execute):
        """Test a synchronous run."""
        mock_execute.return_value = CrawlResult(run_id=4, status='completed', found=5, new=2)

        response = self.client.post('/api/scraping/run', {'config_id': self.config.pk, 'states': ['CE']},
                                    format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['new'], 2)
        mock_execute.assert_called_once_with(self.config.pk, states=['CE'], url=None)

    @patch('api.views.run_scraping')
    def test_run_async(self, mock_task):
        """Test that run_async queues the Celery task."""
        mock_task.delay.return_value = MagicMock(id='task-1')

        response = self.client.post('/api/scraping/run', {'config_id': self.config.pk, 'run_async': True},
                                    format='json')

        self.assertEqual(response.status_code, status.HTTP_202_ACCEPTED)
        self.assertEqual(response.data['task_id'], 'task-1')

    @patch('api.views.execute_crawl')
    def test_run_errors(self, mock_execute):
        """Test unknown configs and concurrent runs."""
        mock_execute.side_effect = ConfigNotFound(999)
        response = self.client.post('/api/scraping/run', {'config_id': 999}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        mock_execute.side_effect = RunInProgress(self.config.pk)
        response = self.client.post('/api/scraping/run', {'config_id': self.config.pk}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_configs(self):
        """Test creating and listing configs."""
        response = self.client.post('/api/scraping/configs', {'name': 'Bahia', 'states': ['BA']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.get('/api/scraping/configs')
        self.assertEqual([config['name'] for config in response.data], ['Bahia', 'Nordeste'])

    def test_logs(self):
        """Test listing runs, newest first."""
        first = property_store.log_run_start(self.config.pk)
        property_store.log_run_finish(first, 'completed', 5, 2)
        second = property_store.log_run_start(self.config.pk)

        response = self.client.get('/api/scraping/logs', {'config_id': self.config.pk})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([log['id'] for log in response.data], [second, first])
        self.assertEqual(response.data[0]['config_name'], 'Nordeste')
        self.assertEqual(response.data[1]['properties_new'], 2)
