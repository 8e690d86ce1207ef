"""Tests for container map loading and validation."""
import textwrap

import pytest

from lxcmap.config.loader import MapLoader, merge_defaults, parse
from lxcmap.core.errors import MapValidationError
from lxcmap.models.container import BindMount, ProvisionType, RootFs


def _doc(**container):
    entry = {
        'id': 2001,
        'host': 'pve-a',
        'hostname': 'web01',
        'ip_cidr': '10.22.11.201/24',
        'rootfs': {'storage': 'local-lvm', 'size_gb': 16},
    }
    entry.update(container)
    return {'deployment': 'web', 'containers': [entry]}


class TestParse:
    """Test building a ContainerMap from a document."""

    def test_minimal_entry_gets_defaults(self):
        container_map = parse(_doc())

        spec = container_map.containers[0]
        assert container_map.deployment == 'web'
        assert spec.id == 2001
        assert spec.provision_type == ProvisionType.UNPRIVILEGED
        assert spec.rootfs == RootFs('local-lvm', 16)
        assert spec.memory_mb == 2048
        assert spec.template == '24.04'
        assert spec.mounts == ()

    def test_defaults_merged_under_entries(self):
        document = _doc()
        document['defaults'] = {'host': 'pve-b', 'memory_mb': 4096, 'rootfs': {'size_gb': 32}}
        del document['containers'][0]['host']
        document['containers'][0]['rootfs'] = {'storage': 'ceph'}

        spec = parse(document).containers[0]

        assert spec.host == 'pve-b'
        assert spec.memory_mb == 4096
        assert spec.rootfs == RootFs('ceph', 32)

    def test_rootfs_string_form(self):
        spec = parse(_doc(rootfs='local-zfs:20G')).containers[0]
        assert spec.rootfs == RootFs('local-zfs', 20)

    def test_mounts_parsed(self):
        spec = parse(_doc(mounts=[
            {'host_path': '/tank/media/', 'container_path': '/srv/media', 'read_only': True},
        ])).containers[0]

        assert spec.mounts == (BindMount('/tank/media', '/srv/media', read_only=True),)

    def test_provision_type_names(self):
        document = _doc(provision_type='nvidia_gpu')
        document['gpu_driver_version'] = '550.54.14'

        container_map = parse(document)

        assert container_map.containers[0].provision_type == ProvisionType.NVIDIA_GPU
        assert container_map.gpu_driver_version == '550.54.14'

    def test_deployment_defaults_to_file_stem(self):
        document = _doc()
        del document['deployment']
        assert parse(document, default_deployment='media').deployment == 'media'


class TestValidation:
    """Every rejection names the offending path."""

    @pytest.mark.parametrize("field,value,path", [
        ('id', 42, 'containers[0].id'),
        ('hostname', 'web_01', 'containers[0].hostname'),
        ('hostname', '-web', 'containers[0].hostname'),
        ('ip_cidr', '10.22.11.201', 'containers[0].ip_cidr'),
        ('gateway', '192.168.1.1', 'containers[0].gateway'),
        ('vlan_tag', 4095, 'containers[0].vlan_tag'),
        ('swap_mb', -1, 'containers[0].swap_mb'),
        ('memory_mb', 0, 'containers[0].memory_mb'),
        ('rootfs', 'local-lvm', 'containers[0].rootfs'),
        ('onboot', 'maybe', 'containers[0].onboot'),
    ])
    def test_invalid_field(self, field, value, path):
        with pytest.raises(MapValidationError) as exc_info:
            parse(_doc(**{field: value}))
        assert exc_info.value.path == path

    def test_unknown_provision_type_names_container(self):
        with pytest.raises(MapValidationError) as exc_info:
            parse(_doc(provision_type='root'))
        assert 'container 2001' in str(exc_info.value)
        assert "'root'" in str(exc_info.value)

    def test_missing_required_field(self):
        document = _doc()
        del document['containers'][0]['ip_cidr']
        with pytest.raises(MapValidationError, match=r"containers\[0\]\.ip_cidr"):
            parse(document)

    def test_unknown_field_rejected(self):
        with pytest.raises(MapValidationError, match="unknown field"):
            parse(_doc(memroy_mb=1024))

    def test_duplicate_id(self):
        document = _doc()
        second = dict(document['containers'][0], hostname='web02', ip_cidr='10.22.11.202/24')
        document['containers'].append(second)

        with pytest.raises(MapValidationError) as exc_info:
            parse(document)

        assert exc_info.value.path == 'containers[1].id'
        assert 'duplicate container id 2001' in str(exc_info.value)

    def test_unknown_host(self):
        with pytest.raises(MapValidationError, match="not in the inventory"):
            parse(_doc(host='pve-z'), known_hosts=['pve-a', 'pve-b'])

    def test_gpu_without_driver_version(self):
        with pytest.raises(MapValidationError) as exc_info:
            parse(_doc(provision_type='nvidia_gpu'))
        assert exc_info.value.path == 'gpu_driver_version'

    def test_duplicate_container_path(self):
        mounts = [
            {'host_path': '/tank/a', 'container_path': '/srv/data'},
            {'host_path': '/tank/b', 'container_path': '/srv/data'},
        ]
        with pytest.raises(MapValidationError, match="mounted twice"):
            parse(_doc(mounts=mounts))

    def test_relative_mount_path(self):
        with pytest.raises(MapValidationError, match="absolute"):
            parse(_doc(mounts=[{'host_path': 'tank/a', 'container_path': '/srv'}]))

    def test_empty_document(self):
        with pytest.raises(MapValidationError, match="empty"):
            parse(None)

    def test_empty_container_list(self):
        with pytest.raises(MapValidationError, match="non-empty list"):
            parse({'containers': []})

    def test_unknown_top_level_key(self):
        document = _doc()
        document['pools'] = {}
        with pytest.raises(MapValidationError, match="pools"):
            parse(document)


class TestMergeDefaults:

    def test_entry_wins(self):
        assert merge_defaults({'cores': 2}, {'cores': 4}) == {'cores': 4}

    def test_rootfs_string_replaces_mapping(self):
        merged = merge_defaults({'rootfs': {'storage': 'a', 'size_gb': 8}}, {'rootfs': 'b:4'})
        assert merged['rootfs'] == 'b:4'


class TestMapLoader:

    def test_load_file(self, tmp_path):
        map_file = tmp_path / "media.yml"
        map_file.write_text(textwrap.dedent("""
            defaults:
              host: pve-a
              rootfs: local-lvm:16
            containers:
              - id: 3001
                hostname: jellyfin
                ip_cidr: 10.0.0.31/24
        """))

        container_map = MapLoader(str(map_file), known_hosts=['pve-a']).load()

        assert container_map.deployment == 'media'
        assert container_map.source == str(map_file)
        assert container_map.containers[0].hostname == 'jellyfin'

    def test_missing_file(self, tmp_path):
        with pytest.raises(MapValidationError, match="not found"):
            MapLoader(str(tmp_path / "nope.yml")).load()

    def test_invalid_yaml(self, tmp_path):
        map_file = tmp_path / "bad.yml"
        map_file.write_text("containers: [\n")
        with pytest.raises(MapValidationError, match="Invalid YAML"):
            MapLoader(str(map_file)).load()
