import pytest

from kubelet.flag_file import parse
from kubelet.patch_planner import (
    ADDED,
    BIN_DIR_FLAG,
    CHANGED,
    CONFIG_FLAG,
    REMOVED,
    DesiredState,
    parse_bool,
    plan,
)

CONFIG_PATH = "/etc/kubernetes/credential-provider/credential-provider-config.yaml"

SCENARIO = (
    'KUBELET_FLAGS="--image-credential-provider-bin-dir=/var/lib/kubelet/credential-provider '
    '--image-credential-provider-config=/var/lib/kubelet/credential-provider-config.yaml"\n'
)

DESIRED = DesiredState(
    bin_dir="/opt",
    config_path=CONFIG_PATH,
    required_feature_gates={"Foo": True},
    obsolete_bin_dir="/var/lib/kubelet/credential-provider",
    obsolete_config_path="/var/lib/kubelet/credential-provider-config.yaml",
)


def test_scenario_replaces_paths_and_appends_gate():
    current = parse(SCENARIO)
    result = plan(current, DESIRED)

    assert result.candidate.serialize() == (
        'KUBELET_FLAGS="--image-credential-provider-bin-dir=/opt '
        f'--image-credential-provider-config={CONFIG_PATH} '
        '--feature-gates=Foo=true"\n'
    )
    assert [(d.action, d.key) for d in result.diff] == [
        (CHANGED, f"--{BIN_DIR_FLAG}"),
        (CHANGED, f"--{CONFIG_FLAG}"),
        (ADDED, "--feature-gates"),
    ]
    assert result.diff[0].old == "/var/lib/kubelet/credential-provider"
    # input document is left alone
    assert current.serialize() == SCENARIO


IDEMPOTENCE_INPUTS = [
    SCENARIO,
    "",
    "KUBELET_OPTS=\nKUBELET_NODE_LABELS=a=b",
    "KUBELET_FLAGS=--v=2 --feature-gates=Foo=false,Other=true\n",
    'KUBELET_FLAGS="--feature-gates=Foo=True --image-credential-provider-bin-dir=/x --image-credential-provider-bin-dir=/y"\n',
    'KUBELET_FLAGS="--feature-gates=A=true --v=2 --feature-gates=Foo=false,Foo=true"\n',
    'KUBELET_FLAGS="--v=2\n',
    "KUBELET_FLAGS=\n",
]


@pytest.mark.parametrize("text", IDEMPOTENCE_INPUTS)
@pytest.mark.parametrize("desired", [
    DESIRED,
    DesiredState(bin_dir="/usr/local/bin", config_path="/etc/cp.yaml"),
    DesiredState(bin_dir="/opt", config_path=CONFIG_PATH, required_feature_gates={"Foo": False, "Bar": True}),
])
def test_planning_twice_gives_empty_diff(text, desired):
    first = plan(parse(text), desired)
    second = plan(first.candidate, desired)
    assert second.diff == []
    assert not second.changed
    assert second.candidate.serialize() == first.candidate.serialize()


def test_existing_gate_with_other_value_is_overwritten_in_place():
    doc = parse("KUBELET_FLAGS=--feature-gates=Foo=false,Other=true --v=2\n")
    result = plan(doc, DESIRED)
    assert result.candidate.get_flag("feature-gates") == "Foo=true,Other=true"
    gate_changes = [d for d in result.diff if d.key == "feature-gate Foo"]
    assert [(d.action, d.old, d.new) for d in gate_changes] == [(CHANGED, "false", "true")]


def test_missing_gate_is_appended_after_unrelated_ones():
    doc = parse("KUBELET_FLAGS=--feature-gates=RotateKubeletServerCertificate=true\n")
    result = plan(doc, DESIRED)
    assert result.candidate.get_flag("feature-gates") == "RotateKubeletServerCertificate=true,Foo=true"
    assert any(d.action == ADDED and d.key == "feature-gate Foo" for d in result.diff)


def test_equivalent_gate_spelling_is_left_untouched():
    line = f"KUBELET_FLAGS=--image-credential-provider-bin-dir=/opt --image-credential-provider-config={CONFIG_PATH} --feature-gates=Foo=True\n"
    result = plan(parse(line), DESIRED)
    assert result.diff == []
    assert result.candidate.serialize() == line


def test_no_flag_line_appends_new_line():
    result = plan(parse("KUBELET_NODE_LABELS=role=agent\n"), DESIRED)
    assert result.candidate.serialize() == (
        "KUBELET_NODE_LABELS=role=agent\n"
        'KUBELET_FLAGS="--image-credential-provider-bin-dir=/opt '
        f'--image-credential-provider-config={CONFIG_PATH} --feature-gates=Foo=true"\n'
    )
    assert [d.action for d in result.diff] == [ADDED, ADDED, ADDED]


def test_missing_flags_are_added_to_existing_line():
    result = plan(parse("KUBELET_FLAGS=--v=2\n"), DESIRED)
    assert result.candidate.serialize() == (
        "KUBELET_FLAGS=--v=2 --image-credential-provider-bin-dir=/opt "
        f"--image-credential-provider-config={CONFIG_PATH} --feature-gates=Foo=true\n"
    )


def test_duplicates_collapse_to_first_occurrence():
    doc = parse(
        'KUBELET_FLAGS="--image-credential-provider-bin-dir=/a --v=2 '
        '--image-credential-provider-bin-dir=/b --feature-gates=Foo=true,Foo=false"\n'
    )
    result = plan(doc, DESIRED)
    candidate = result.candidate
    assert candidate.flag_values(BIN_DIR_FLAG) == ["/opt"]
    assert candidate.get_flag("feature-gates") == "Foo=true"
    removed = [(d.key, d.old) for d in result.diff if d.action == REMOVED]
    assert (f"--{BIN_DIR_FLAG}", "/b") in removed
    assert ("feature-gate Foo", "false") in removed


def test_repeated_feature_gates_flags_are_folded_without_required_gates():
    desired = DesiredState(bin_dir="/opt", config_path=CONFIG_PATH)
    doc = parse('KUBELET_FLAGS="--feature-gates=A=true --v=2 --feature-gates=B=true"\n')
    result = plan(doc, desired)

    assert result.candidate.flag_values("feature-gates") == ["A=true,B=true"]
    assert (CHANGED, "--feature-gates", "A=true", "A=true,B=true") in [
        (d.action, d.key, d.old, d.new) for d in result.diff
    ]
    assert (REMOVED, "--feature-gates", "B=true") in [(d.action, d.key, d.old) for d in result.diff]
    assert plan(result.candidate, desired).diff == []


def test_repeated_feature_gates_flags_keep_later_entries():
    doc = parse('KUBELET_FLAGS="--feature-gates=A=true --feature-gates=B=false,Foo=false"\n')
    result = plan(doc, DESIRED)
    assert result.candidate.flag_values("feature-gates") == ["A=true,B=false,Foo=true"]


def test_repeated_unrelated_gate_is_kept():
    doc = parse("KUBELET_FLAGS=--feature-gates=Bar=true,Bar=false\n")
    result = plan(doc, DESIRED)
    assert result.candidate.get_flag("feature-gates") == "Bar=true,Bar=false,Foo=true"


def test_no_required_gates_leaves_feature_gates_alone():
    desired = DesiredState(bin_dir="/opt", config_path=CONFIG_PATH)
    result = plan(parse("KUBELET_FLAGS=--feature-gates=A=true,A=false\n"), desired)
    assert result.candidate.get_flag("feature-gates") == "A=true,A=false"


def test_describe_lists_changes():
    result = plan(parse(SCENARIO), DESIRED)
    text = result.describe()
    assert "~ --image-credential-provider-bin-dir: /var/lib/kubelet/credential-provider -> /opt" in text
    assert "+ --feature-gates=Foo=true" in text
    assert plan(result.candidate, DESIRED).describe() == "no changes"


@pytest.mark.parametrize("value,expected", [
    ("true", True), ("True", True), ("1", True), ("t", True),
    ("false", False), ("F", False), ("0", False),
    ("yes", None), ("", None), (None, None),
])
def test_parse_bool(value, expected):
    assert parse_bool(value) is expected
