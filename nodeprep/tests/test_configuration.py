import yaml

from conftest import CONTAINERD_DEFAULT_CONFIG, FSTAB
from nodeprep.modules.provision.configuration import (
    active_swaps,
    comment_swap_entries,
    crictl_endpoint,
    ensure_systemd_cgroup,
    has_systemd_cgroup,
    render_crictl_config,
    render_minimal_containerd_config,
    render_modules_load,
    render_sources_list,
    render_sysctl,
    repository_url,
)


def test_render_modules_load():
    content = render_modules_load(['overlay', 'br_netfilter'])
    assert content.splitlines()[1:] == ['overlay', 'br_netfilter']
    assert content.endswith('\n')


def test_render_sysctl():
    content = render_sysctl({'net.ipv4.ip_forward': '1'})
    assert 'net.ipv4.ip_forward' in content
    assert content.rstrip().endswith('= 1')


def test_minimal_containerd_config_enables_systemd_cgroup():
    content = render_minimal_containerd_config()
    assert has_systemd_cgroup(content)
    assert 'runtime_type = "io.containerd.runc.v2"' in content


def test_sources_list():
    url = repository_url('https://pkgs.k8s.io/core:/stable:/', 'v1.31')
    assert url == 'https://pkgs.k8s.io/core:/stable:/v1.31/deb/'
    assert render_sources_list('/etc/apt/keyrings/k.gpg', url).strip() == (
        'deb [signed-by=/etc/apt/keyrings/k.gpg] https://pkgs.k8s.io/core:/stable:/v1.31/deb/ /'
    )


def test_ensure_systemd_cgroup_flips_existing_setting():
    assert not has_systemd_cgroup(CONTAINERD_DEFAULT_CONFIG)
    updated = ensure_systemd_cgroup(CONTAINERD_DEFAULT_CONFIG)

    assert has_systemd_cgroup(updated)
    assert 'SystemdCgroup = false' not in updated
    assert 'BinaryName = ""' in updated
    assert ensure_systemd_cgroup(updated) == updated


def test_ensure_systemd_cgroup_adds_missing_setting():
    text = CONTAINERD_DEFAULT_CONFIG.replace('            SystemdCgroup = false\n', '')
    updated = ensure_systemd_cgroup(text)
    assert has_systemd_cgroup(updated)
    assert '            SystemdCgroup = true' in updated


def test_config_without_runc_options_fails_verification():
    assert not has_systemd_cgroup(ensure_systemd_cgroup('version = 2\n'))


def test_comment_swap_entries_is_idempotent():
    content, commented = comment_swap_entries(FSTAB)

    assert commented == [FSTAB.splitlines()[2].strip()]
    assert '#/swap.img' in content
    assert 'UUID=1234-abcd' in content.splitlines()[1]

    again, commented_again = comment_swap_entries(content)
    assert again == content
    assert commented_again == []
    assert '##' not in again


def test_swap_word_elsewhere_is_not_commented():
    fstab = '/dev/sdb1 /mnt/swapfiles ext4 defaults 0 2\n'
    assert comment_swap_entries(fstab) == (fstab, [])


def test_active_swaps():
    header = 'Filename Type Size Used Priority\n'
    assert active_swaps(header) == []
    assert active_swaps(None) == []
    assert active_swaps(header + '/swap.img file 100 0 -2\n') == ['/swap.img']


def test_crictl_config_preserves_other_keys():
    existing = 'timeout: 10\nruntime-endpoint: unix:///var/run/dockershim.sock\n'
    content = render_crictl_config(existing, 'unix:///run/containerd/containerd.sock')

    data = yaml.safe_load(content)
    assert data == {
        'timeout': 10,
        'runtime-endpoint': 'unix:///run/containerd/containerd.sock',
        'image-endpoint': 'unix:///run/containerd/containerd.sock',
    }
    assert crictl_endpoint(content) == 'unix:///run/containerd/containerd.sock'


def test_crictl_endpoint_of_unreadable_config():
    assert crictl_endpoint(None) is None
    assert crictl_endpoint('- a list') is None
