import pytest

from fakes import FakeServices, MemoryFilesystem
from kubelet import check_kubelet_config
from provider.render_config import render_descriptor
from utils.settings import load_settings

GATE = "KubeletServiceAccountTokenForCredentialProviders"


@pytest.fixture
def settings():
    return load_settings()


@pytest.fixture
def configured(settings):
    fs = MemoryFilesystem({
        settings.flags_file: (
            'KUBELET_FLAGS="--node-labels=agentpool=nodepool1 '
            f"--image-credential-provider-bin-dir={settings.bin_dir} "
            f"--image-credential-provider-config={settings.config_path} "
            f'--feature-gates={GATE}=true"\n'
        ),
        settings.config_path: render_descriptor(settings),
        settings.sentinel_path: "node=aks-nodepool1-0\n",
    })
    fs.put(settings.binary_path, b"\x7fELF", mode=0o755)
    return fs


def test_configured_node_passes_everything(configured, settings, capsys):
    results = check_kubelet_config.run_checks(configured, FakeServices(), settings)

    assert len(results) == 10
    assert [r.name for r in results if not r.passed] == []
    assert check_kubelet_config.report(results) is True
    out = capsys.readouterr().out
    assert "Checks passed: 10/10" in out
    assert "Result: ALL CHECKS PASSED" in out
    # only reads
    assert configured.writes == []


def test_inactive_service_shows_logs(configured, settings, capsys):
    results = check_kubelet_config.run_checks(configured, FakeServices(state="failed"), settings)
    failed = [r.name for r in results if not r.passed]

    assert failed == ["service-active"]
    assert "kubelet log line" in capsys.readouterr().out
    assert check_kubelet_config.report(results) is False
    assert "Result: SOME CHECKS FAILED" in capsys.readouterr().out


def test_unconfigured_node(settings):
    fs = MemoryFilesystem({
        settings.flags_file: (
            "KUBELET_FLAGS=--image-credential-provider-bin-dir=/var/lib/kubelet/credential-provider "
            "--image-credential-provider-config=/var/lib/kubelet/credential-provider-config.yaml\n"
        ),
    })
    results = {r.name: r for r in check_kubelet_config.run_checks(fs, FakeServices(), settings)}

    assert not results["credential-provider-config"].passed
    assert not results["credential-provider-bin-dir"].passed
    assert not results["feature-gates"].passed
    assert results["flag-line-syntax"].passed
    assert not results["obsolete-config-path"].passed
    assert not results["obsolete-bin-dir"].passed
    assert not results["binary-executable"].passed
    assert not results["descriptor-valid"].passed
    assert results["service-active"].passed
    assert not results["sentinel-present"].passed


def test_unreadable_flag_file_fails_flag_checks(configured, settings):
    configured.fail_reads.add(str(settings.flags_file))
    results = check_kubelet_config.run_checks(configured, FakeServices(), settings)

    assert [r.passed for r in results[:6]] == [False] * 6
    assert "Permission denied" in results[0].observed
    assert all(r.passed for r in results[6:])


def test_broken_descriptor(configured, settings):
    configured.put(settings.config_path, "kind: Pod\n")
    results = {r.name: r for r in check_kubelet_config.run_checks(configured, FakeServices(), settings)}
    assert not results["descriptor-valid"].passed
    assert "CredentialProviderConfig" in results["descriptor-valid"].observed
