import pytest

from kubelet.flag_file import parse
from kubelet.patch_planner import DesiredState, plan
from kubelet.validator import (
    CHECK_BIN_DIR,
    CHECK_CONFIG_PATH,
    CHECK_FEATURE_GATES,
    CHECK_OBSOLETE_BIN_DIR,
    CHECK_OBSOLETE_CONFIG,
    CHECK_ORDER,
    CHECK_SYNTAX,
    path_occurs,
    validate,
)

CONFIG_PATH = "/etc/kubernetes/credential-provider/credential-provider-config.yaml"
OLD_BIN_DIR = "/var/lib/kubelet/credential-provider"
OLD_CONFIG = "/var/lib/kubelet/credential-provider-config.yaml"

DESIRED = DesiredState(
    bin_dir="/opt",
    config_path=CONFIG_PATH,
    required_feature_gates={"Foo": True},
    obsolete_bin_dir=OLD_BIN_DIR,
    obsolete_config_path=OLD_CONFIG,
)

GOOD = (
    "KUBELET_OPTS=\n"
    'KUBELET_FLAGS="--node-ip=10.0.0.4 --image-credential-provider-bin-dir=/opt '
    f"--image-credential-provider-config={CONFIG_PATH} "
    '--feature-gates=Bar=false,Foo=true"\n'
)

SCENARIO = (
    f'KUBELET_FLAGS="--image-credential-provider-bin-dir={OLD_BIN_DIR} '
    f'--image-credential-provider-config={OLD_CONFIG}"\n'
)


def test_good_document_passes_all_checks_in_order():
    report = validate(parse(GOOD), DESIRED)
    assert [c.name for c in report.checks] == list(CHECK_ORDER)
    assert report.passed
    assert report.failed() == []


@pytest.mark.parametrize("failing,text", [
    (CHECK_CONFIG_PATH, GOOD.replace(CONFIG_PATH, "/etc/other.yaml")),
    (CHECK_BIN_DIR, GOOD.replace("bin-dir=/opt", "bin-dir=/usr/local/bin")),
    (CHECK_FEATURE_GATES, GOOD.replace("Foo=true", "Foo=false")),
    (CHECK_SYNTAX, GOOD.replace('Foo=true"\n', "Foo=true\n")),
    (CHECK_SYNTAX, GOOD.replace("--node-ip=10.0.0.4", "--image-credential-provider-bin-dir=/opt")),
    (CHECK_SYNTAX, GOOD.replace('Foo=true"\n', 'Foo=true" --v=2\n')),
    (CHECK_SYNTAX, GOOD.replace("Foo=true", "Foo=true,Foo=true")),
    (CHECK_OBSOLETE_CONFIG, GOOD + f"# old: --image-credential-provider-config={OLD_CONFIG}\n"),
    (CHECK_OBSOLETE_BIN_DIR, GOOD + f"OLD_BIN_DIR={OLD_BIN_DIR}\n"),
])
def test_each_check_fails_on_its_own(failing, text):
    report = validate(parse(text), DESIRED)
    outcome = {c.name: c.passed for c in report.checks}
    assert outcome.pop(failing) is False
    assert all(outcome.values()), outcome
    assert not report.passed


def test_all_checks_run_even_when_first_fails():
    report = validate(parse("KUBELET_NODE_LABELS=x\n"), DESIRED)
    assert len(report.checks) == 6
    assert [c.name for c in report.failed()] == [
        CHECK_CONFIG_PATH, CHECK_BIN_DIR, CHECK_FEATURE_GATES, CHECK_SYNTAX,
    ]
    assert report.get(CHECK_BIN_DIR).observed == "NOT SET"


def test_repeated_unrelated_gate_is_allowed():
    report = validate(parse(GOOD.replace("Bar=false", "Bar=false,Bar=true")), DESIRED)
    assert report.passed, report.summary()
    assert report.get(CHECK_SYNTAX).observed == "well-formed"


def test_repeated_feature_gates_flag_is_rejected():
    text = GOOD.replace('Foo=true"', 'Foo=true --feature-gates=Baz=true"')
    report = validate(parse(text), DESIRED)
    assert [c.name for c in report.failed()] == [CHECK_SYNTAX]
    assert "--feature-gates given 2 times" in report.get(CHECK_SYNTAX).observed


def test_obsolete_bin_dir_fails_before_patch_and_passes_after():
    desired = DesiredState(
        bin_dir="/opt",
        config_path=CONFIG_PATH,
        required_feature_gates={"Foo": True},
        obsolete_bin_dir=OLD_BIN_DIR,
    )
    current = parse(SCENARIO)
    before = validate(current, desired)
    assert before.get(CHECK_OBSOLETE_BIN_DIR).passed is False

    after = validate(plan(current, desired).candidate, desired)
    assert after.get(CHECK_OBSOLETE_BIN_DIR).passed is True
    assert after.passed


def test_scenario_candidate_passes_everything():
    report = validate(plan(parse(SCENARIO), DESIRED).candidate, DESIRED)
    assert report.passed, report.summary()


def test_obsolete_checks_pass_when_not_configured():
    desired = DesiredState(bin_dir="/opt", config_path=CONFIG_PATH, required_feature_gates={"Foo": True})
    report = validate(parse(GOOD + f"X={OLD_BIN_DIR}\n"), desired)
    assert report.passed
    assert report.get(CHECK_OBSOLETE_BIN_DIR).observed == "not configured"


def test_report_summary_names_expected_and_actual():
    report = validate(parse(GOOD.replace("bin-dir=/opt", "bin-dir=/srv")), DESIRED)
    summary = report.summary()
    assert "✗ credential-provider-bin-dir: expected /opt, actual /srv" in summary
    assert "✓ flag-line-syntax: well-formed" in summary


@pytest.mark.parametrize("text,path,expected", [
    (f"--x={OLD_BIN_DIR}", OLD_BIN_DIR, True),
    (f"--x={OLD_BIN_DIR}/", OLD_BIN_DIR, True),
    (f'"{OLD_BIN_DIR}"', OLD_BIN_DIR, True),
    (f"--x={OLD_BIN_DIR}/acr-provider", OLD_BIN_DIR, True),
    (f"--x={OLD_CONFIG}", OLD_BIN_DIR, False),
    (f"--x=/srv{OLD_BIN_DIR}", OLD_BIN_DIR, False),
    ("--x=/opt/bin", "/opt", True),
    ("--x=/optional", "/opt", False),
    ("A=1\nB=/opt\nC=2", "/opt/", True),
])
def test_path_occurs(text, path, expected):
    assert path_occurs(text, path) is expected
