"""
Tests for the deployment orchestrator, run against the in-memory portal client.
"""

import copy
import random
import time

import pytest

from solution_deployer import deploy_solution
from solution_deployer.config.deploy_config import DeployOptions, DeploymentStage
from solution_deployer.deployer import SolutionDeployer
from solution_deployer.utils.exceptions import (
    CircularResolutionFailure, DependencyCycleError, DeploymentCancelled, ExtentResolutionFailure,
    FetchFailure, FolderCreationFailure, ItemCreationFailure, MissingSubstitutionError,
    PortalRequestError, SolutionItemCreationFailure
)
from solution_deployer.utils.progress import CancellationToken

from .conftest import PORTAL


def independent_items(count, kind='Dashboard'):
    return {
        'templates': [
            {'itemId': f"item{i}", 'type': kind, 'dependencies': [], 'item': {'title': f"Item {i}"}, 'data': {}}
            for i in range(count)
        ]
    }


def created_titles(client):
    return [created['properties'].get('title') for created in client.created.values()]


def random_dag(seed, count=12):
    """Seeded random DAG of items whose data holds their dependencies' ID placeholders."""
    rng = random.Random(seed)
    templates = []
    for i in range(count):
        earlier = [f"item{j}" for j in range(i)]
        deps = rng.sample(earlier, rng.randint(0, min(i, 3)))
        templates.append({
            'itemId': f"item{i}", 'type': 'Dashboard', 'dependencies': deps,
            'item': {'title': f"Item {i}"},
            'data': {'deps': ["{{" + dep + ".itemId}}" for dep in deps]}
        })
    rng.shuffle(templates)
    return {'templates': templates}


class TestSuccessfulDeployment:

    def test_result_is_deployed_solution(self, fake_client, solution_id):
        result = deploy_solution(solution_id, fake_client)

        item = result['item']
        assert item['id'] == 'new1'
        assert item['type'] == 'Solution'
        assert item['typeKeywords'] == ['Solution', 'Deployed']
        assert item['thumbnailUrl'].endswith('/items/new1/info/thumbnail.png')
        assert 'owner' not in item and 'created' not in item
        assert 'data' not in item

    def test_progress_checkpoints(self, fake_client, solution_id):
        reported = []
        deploy_solution(solution_id, fake_client, DeployOptions(progress_callback=reported.append))

        # Item costs 3, 1, 1 share 95 percent
        assert reported == pytest.approx([1, 3, 4, 61, 80, 99, 100])

    def test_items_created_in_dependency_order(self, fake_client, solution_id):
        deploy_solution(solution_id, fake_client)

        assert created_titles(fake_client) == ['Foo', 'Parcels', 'Parcel Map', 'Parcel Viewer']
        assert all(created['folder_id'] == 'folder1' for created in fake_client.created.values())

    def test_placeholders_resolved_in_created_items(self, fake_client, solution_id):
        deploy_solution(solution_id, fake_client)

        feature_service = fake_client.created['new2']['properties']
        assert feature_service['extent'] == '-116.8,33.7,-107.8,40.9'
        assert feature_service['type'] == 'Feature Service'

        web_map = fake_client.created['new3']
        layer = web_map['data']['operationalLayers'][0]
        assert layer['url'] == 'https://services.arcgis.com/org1/arcgis/rest/services/new2/FeatureServer/0'
        assert layer['itemId'] == 'new2'

        app = fake_client.created['new4']
        assert app['properties']['title'] == 'Parcel Viewer'
        assert app['data']['values'] == {'webmap': 'new3', 'folder': 'folder1'}

    def test_self_reference_patched_after_creation(self, fake_client, solution_id):
        deploy_solution(solution_id, fake_client)

        created_url = fake_client.created['new3']['properties']['url']
        assert created_url.endswith('webmap={{wm1.itemId}}')

        patches = [props for item_id, props, _ in fake_client.updated if item_id == 'new3']
        assert patches[0]['url'] == 'https://myorg.maps.arcgis.com/home/webmap/viewer.html?webmap=new3'

    def test_manifest_remapped_and_normalized(self, fake_client, solution_id):
        result = deploy_solution(solution_id, fake_client)

        assert result['data']['templates'] == [
            {'itemId': 'new2', 'type': 'Feature Service', 'dependencies': [], 'circularDependencies': []},
            {'itemId': 'new3', 'type': 'Web Map', 'dependencies': ['new2'], 'circularDependencies': []},
            {'itemId': 'new4', 'type': 'Web Mapping Application', 'dependencies': ['new3'], 'circularDependencies': []},
        ]
        assert result['data']['metadata'] == {'version': 1}

        solution_id_, props, data = fake_client.updated[-1]
        assert solution_id_ == 'new1'
        assert props['typeKeywords'] == ['Solution', 'Deployed']
        assert data == result['data']

    def test_stage_done(self, fake_client, solution_id):
        deployer = SolutionDeployer(fake_client)
        deployer.deploy(solution_id)

        assert deployer.stage == DeploymentStage.DONE
        assert deployer.error is None

    def test_solution_created_with_empty_data_and_template_keyword_dropped(self, fake_client, solution_id):
        deploy_solution(solution_id, fake_client)

        solution = fake_client.created['new1']
        assert solution['data'] == {}
        assert solution['properties']['typeKeywords'] == ['Solution']

    def test_option_overrides(self, fake_client, solution_id):
        options = DeployOptions(title='Bar', tags=['x'], snippet='s', description='d')
        result = deploy_solution(solution_id, fake_client, options)

        assert fake_client.folders[-1]['title'] == 'Bar'
        assert result['item']['title'] == 'Bar'
        assert result['item']['tags'] == ['x']
        assert result['item']['snippet'] == 's'
        assert result['item']['description'] == 'd'

    def test_seed_dictionary_values(self, make_client, solution_id):
        data = {'templates': [{
            'itemId': 'd1', 'type': 'Dashboard', 'dependencies': [],
            'item': {'title': '{{custom.name:upperCase}}'}, 'data': {'portal': '{{isPortal}}'}
        }]}
        client = make_client(item_data=data)
        seed = {'custom': {'name': 'permits'}}

        deploy_solution(solution_id, client, DeployOptions(template_dictionary=seed))

        assert client.created['new2']['properties']['title'] == 'PERMITS'
        assert client.created['new2']['data'] == {'portal': False}
        assert seed == {'custom': {'name': 'permits'}}

    def test_portal_base_url_falls_back_to_portal_url(self, make_client, solution_id):
        portal = dict(PORTAL)
        del portal['customBaseUrl']
        client = make_client(portal=portal)

        deployer = SolutionDeployer(client)
        deployer.deploy(solution_id)

        assert deployer.dictionary.get('portalBaseUrl') == 'https://myorg.maps.arcgis.com'

    def test_failing_progress_callback_does_not_stop_deployment(self, fake_client, solution_id):
        def callback(percent):
            raise RuntimeError("sink closed")

        result = deploy_solution(solution_id, fake_client, DeployOptions(progress_callback=callback))
        assert result['item']['id'] == 'new1'

    def test_empty_solution(self, make_client, solution_id):
        reported = []
        client = make_client(item_data={'templates': []})

        result = deploy_solution(solution_id, client, DeployOptions(progress_callback=reported.append))

        assert result['data']['templates'] == []
        assert reported == [1, 3, 4, 100]


class TestFolder:

    def test_smallest_unused_suffix(self, make_client, solution_id):
        client = make_client(folders=[{'id': 'f1', 'title': 'Foo'}, {'id': 'f2', 'title': 'Foo 1'}])

        deployer = SolutionDeployer(client)
        deployer.deploy(solution_id)

        assert [c[1] for c in client.calls if c[0] == 'create_folder'] == ['Foo 2']
        assert deployer.dictionary.get('folderId') == 'folder3'
        titles = [f['title'] for f in deployer.dictionary.get('user.folders')]
        assert titles == ['Foo', 'Foo 1', 'Foo 2']

    def test_name_rejected_by_server_tries_next(self, make_client, solution_id):
        client = make_client()
        client.taken_folder_titles = {'Foo'}

        deploy_solution(solution_id, client)

        assert [c[1] for c in client.calls if c[0] == 'create_folder'] == ['Foo', 'Foo 1']

    def test_suffix_gap_is_reused(self, make_client, solution_id):
        client = make_client(folders=[{'id': 'f1', 'title': 'Foo'}, {'id': 'f2', 'title': 'Foo 2'}])

        deploy_solution(solution_id, client)

        assert client.folders[-1]['title'] == 'Foo 1'


class TestExtent:

    def test_reprojected_through_geometry_service(self, fake_client, solution_id):
        deployer = SolutionDeployer(fake_client)
        deployer.deploy(solution_id)

        call = [c for c in fake_client.calls if c[0] == 'reproject_extent'][0]
        assert call[2] == {'wkid': 4326}
        assert call[3] == PORTAL['helperServices']['geometry']['url']
        assert deployer.dictionary.get('solutionItemExtent') == '-116.8,33.7,-107.8,40.9'

    def test_geographic_extent_not_reprojected(self, make_client, solution_id):
        portal = copy.deepcopy(PORTAL)
        portal['defaultExtent'] = {'xmin': -180, 'ymin': -90, 'xmax': 180, 'ymax': 90, 'spatialReference': {'wkid': 4326}}
        client = make_client(portal=portal)

        deployer = SolutionDeployer(client)
        deployer.deploy(solution_id)

        assert 'reproject_extent' not in client.call_names()
        assert deployer.dictionary.get('solutionItemExtent') == '-180,-90,180,90'

    def test_missing_geometry_service(self, make_client, solution_id):
        portal = copy.deepcopy(PORTAL)
        del portal['helperServices']
        client = make_client(portal=portal)

        with pytest.raises(ExtentResolutionFailure) as exc_info:
            deploy_solution(solution_id, client)

        assert exc_info.value.to_dict()['stage'] == 'ExtentResolved'
        assert 'create_item' not in client.call_names()


class TestFailures:

    def test_fetch_failure(self, fake_client, solution_id):
        fake_client.failures['fetch_portal'] = PortalRequestError("Token expired", 498)
        deployer = SolutionDeployer(fake_client)

        with pytest.raises(FetchFailure) as exc_info:
            deployer.deploy(solution_id)

        assert isinstance(exc_info.value.cause, PortalRequestError)
        assert exc_info.value.to_dict() == {
            'success': False,
            'stage': 'Fetching',
            'itemId': None,
            'error': str(exc_info.value)
        }
        assert deployer.stage == DeploymentStage.FAILED
        assert 'create_folder' not in fake_client.call_names()

    def test_folder_failure(self, fake_client, solution_id):
        fake_client.failures['create_folder'] = RuntimeError("quota")

        with pytest.raises(FolderCreationFailure):
            deploy_solution(solution_id, fake_client)

        assert 'create_item' not in fake_client.call_names()

    def test_solution_item_failure(self, fake_client, solution_id):
        fake_client.fail_titles['Foo'] = RuntimeError("rejected")

        with pytest.raises(SolutionItemCreationFailure) as exc_info:
            deploy_solution(solution_id, fake_client)

        assert exc_info.value.stage == DeploymentStage.SOLUTION_ITEM_CREATED
        assert created_titles(fake_client) == []

    def test_item_failure_stops_later_items(self, fake_client, solution_id):
        fake_client.fail_titles['Parcel Map'] = RuntimeError("bad layer")

        with pytest.raises(ItemCreationFailure) as exc_info:
            deploy_solution(solution_id, fake_client)

        assert exc_info.value.item_id == 'wm1'
        assert exc_info.value.to_dict()['stage'] == 'DeployingItems'
        assert created_titles(fake_client) == ['Foo', 'Parcels']

    def test_missing_substitution(self, make_client, solution_id):
        data = {'templates': [{
            'itemId': 'd1', 'type': 'Dashboard', 'dependencies': [],
            'item': {'title': 'Board'}, 'data': {'source': '{{unknown.url}}'}
        }]}
        client = make_client(item_data=data)

        with pytest.raises(ItemCreationFailure) as exc_info:
            deploy_solution(solution_id, client)

        assert isinstance(exc_info.value.cause, MissingSubstitutionError)
        assert exc_info.value.cause.path == 'unknown.url'
        assert created_titles(client) == ['Foo']

    def test_dependency_cycle_detected_before_anything_is_created(self, make_client, solution_id):
        data = {'templates': [
            {'itemId': 'a', 'type': 'Dashboard', 'dependencies': ['b'], 'item': {'title': 'A'}},
            {'itemId': 'b', 'type': 'Dashboard', 'dependencies': ['a'], 'item': {'title': 'B'}},
        ]}
        client = make_client(item_data=data)

        with pytest.raises(DependencyCycleError) as exc_info:
            deploy_solution(solution_id, client)

        assert set(exc_info.value.item_ids) == {'a', 'b'}
        assert exc_info.value.stage == DeploymentStage.FETCHING
        assert 'create_folder' not in client.call_names()
        assert created_titles(client) == []

    def test_duplicate_item_ids_rejected(self, make_client, solution_id):
        data = {'templates': [
            {'itemId': 'a', 'type': 'Dashboard', 'dependencies': [], 'item': {'title': 'A'}},
            {'itemId': 'a', 'type': 'Dashboard', 'dependencies': [], 'item': {'title': 'A copy'}},
        ]}
        client = make_client(item_data=data)

        with pytest.raises(FetchFailure) as exc_info:
            deploy_solution(solution_id, client)

        assert isinstance(exc_info.value.cause, ValueError)
        assert 'more than once' in str(exc_info.value)
        assert 'create_folder' not in client.call_names()

    def test_circular_update_failure(self, make_client, solution_id):
        client = make_client(item_data=circular_pair())
        original_update = client.update_item

        def update_item(item_id, item_properties, data, folder_id):
            if item_id == 'new2':
                raise RuntimeError("locked")
            original_update(item_id, item_properties, data, folder_id)

        client.update_item = update_item

        with pytest.raises(CircularResolutionFailure) as exc_info:
            deploy_solution(solution_id, client)

        assert exc_info.value.item_id == 'a'


def circular_pair():
    return {'templates': [
        {
            'itemId': 'a', 'type': 'Dashboard', 'dependencies': ['b'], 'circularDependencies': ['b'],
            'item': {'title': 'A'}, 'data': {'partner': '{{b.itemId}}'}
        },
        {
            'itemId': 'b', 'type': 'Dashboard', 'dependencies': ['a'], 'circularDependencies': ['a'],
            'item': {'title': 'B'}, 'data': {'partner': '{{a.itemId}}'}
        },
    ]}


class TestCircularDependencies:

    def test_partners_created_then_patched(self, make_client, solution_id):
        client = make_client(item_data=circular_pair())

        result = deploy_solution(solution_id, client)

        # Created with the partner reference left in place
        assert client.created['new2']['data'] == {'partner': '{{b.itemId}}'}
        assert client.created['new3']['data'] == {'partner': '{{a.itemId}}'}

        patches = {item_id: data for item_id, _, data in client.updated if item_id != 'new1'}
        assert patches == {'new2': {'partner': 'new3'}, 'new3': {'partner': 'new2'}}

        assert result['data']['templates'] == [
            {'itemId': 'new2', 'type': 'Dashboard', 'dependencies': ['new3'], 'circularDependencies': ['new3']},
            {'itemId': 'new3', 'type': 'Dashboard', 'dependencies': ['new2'], 'circularDependencies': ['new2']},
        ]

    def test_circular_pass_runs_after_all_items(self, make_client, solution_id):
        client = make_client(item_data=circular_pair())

        deploy_solution(solution_id, client)

        names = client.call_names()
        last_create = max(i for i, name in enumerate(names) if name == 'create_item')
        first_update = names.index('update_item')
        assert first_update > last_create


class TestCancellation:

    def test_cancelled_before_start(self, fake_client, solution_id):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(DeploymentCancelled) as exc_info:
            deploy_solution(solution_id, fake_client, DeployOptions(cancellation_token=token))

        assert exc_info.value.stage == DeploymentStage.FETCHING
        assert fake_client.calls == []

    def test_cancelled_after_solution_item(self, fake_client, solution_id):
        token = CancellationToken()

        def callback(percent):
            if percent >= 4:
                token.cancel()

        deployer = SolutionDeployer(
            fake_client, DeployOptions(progress_callback=callback, cancellation_token=token)
        )
        with pytest.raises(DeploymentCancelled) as exc_info:
            deployer.deploy(solution_id)

        assert exc_info.value.stage == DeploymentStage.DEPLOYING_ITEMS
        assert exc_info.value.to_dict()['stage'] == 'DeployingItems'
        assert deployer.stage == DeploymentStage.FAILED
        assert created_titles(fake_client) == ['Foo']

    def test_cancelled_between_items(self, fake_client, solution_id):
        token = CancellationToken()

        def callback(percent):
            if percent > 4:
                token.cancel()

        with pytest.raises(DeploymentCancelled) as exc_info:
            deploy_solution(solution_id, fake_client, DeployOptions(progress_callback=callback, cancellation_token=token))

        assert exc_info.value.item_id == 'wm1'
        assert created_titles(fake_client) == ['Foo', 'Parcels']


class TestConcurrency:

    def test_sequential_by_default(self, make_client, solution_id):
        client = make_client(item_data=independent_items(4), create_delay=0.01)

        deploy_solution(solution_id, client)

        assert client.max_active == 1

    def test_bounded_parallel_creation(self, make_client, solution_id):
        client = make_client(item_data=independent_items(6), create_delay=0.05)

        result = deploy_solution(solution_id, client, DeployOptions(max_concurrency=2))

        assert 1 <= client.max_active <= 2
        assert len(client.created) == 7
        assert sorted(t['itemId'] for t in result['data']['templates']) == sorted(
            f"new{i}" for i in range(2, 8)
        )

    def test_parallel_levels_respect_dependencies(self, fake_client, solution_id):
        deploy_solution(solution_id, fake_client, DeployOptions(max_concurrency=4))

        assert created_titles(fake_client) == ['Foo', 'Parcels', 'Parcel Map', 'Parcel Viewer']

    def test_parallel_failure(self, make_client, solution_id):
        client = make_client(item_data=independent_items(3), create_delay=0.01)
        client.fail_titles['Item 1'] = RuntimeError("boom")

        with pytest.raises(ItemCreationFailure) as exc_info:
            deploy_solution(solution_id, client, DeployOptions(max_concurrency=3))

        assert exc_info.value.item_id == 'item1'

    def test_running_items_finish_before_failure_is_reported(self, make_client, solution_id):
        client = make_client(item_data=independent_items(2))
        client.title_delays = {'Item 0': 0.05, 'Item 1': 0.4}
        client.fail_titles['Item 0'] = RuntimeError("boom")
        reported = []

        with pytest.raises(ItemCreationFailure) as exc_info:
            deploy_solution(solution_id, client, DeployOptions(max_concurrency=2, progress_callback=reported.append))

        assert exc_info.value.item_id == 'item0'
        assert created_titles(client) == ['Foo', 'Item 1']
        created_count, progress = len(client.created), list(reported)
        time.sleep(0.5)
        assert len(client.created) == created_count
        assert reported == progress

    @pytest.mark.parametrize('seed', [3, 17, 2024])
    @pytest.mark.parametrize('max_concurrency', [1, 3])
    def test_random_dependency_graph(self, make_client, solution_id, seed, max_concurrency):
        data = random_dag(seed)
        client = make_client(item_data=data, create_delay=0.005)

        deploy_solution(solution_id, client, DeployOptions(max_concurrency=max_concurrency))

        new_ids = {created['properties']['title']: new_id for new_id, created in client.created.items()}
        order = list(client.created)
        for template in data['templates']:
            new_id = new_ids[template['item']['title']]
            dep_ids = [new_ids[f"Item {dep[len('item'):]}"] for dep in template['dependencies']]
            assert client.created[new_id]['data'] == {'deps': dep_ids}
            for dep_id in dep_ids:
                assert order.index(dep_id) < order.index(new_id)
