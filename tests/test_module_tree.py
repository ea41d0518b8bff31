import copy

import pytest

from checkpoint_inspector.model_formats.tensor import DType, TensorDescriptor
from checkpoint_inspector.tree.module_tree import Key, ModuleTree, PathSplit, natural_key


def _t(*shape: int) -> TensorDescriptor:
    n = 1
    for d in shape:
        n *= d
    return TensorDescriptor(dtype=DType.F32, shape=tuple(shape), nbytes=4 * n, offset=0)


def test_single_tensor_tree_and_flatten():
    tree = ModuleTree.build([("layer.0.weight", _t(4, 4))])
    assert list(k.text for k in tree.children) == ["layer"]
    layer = tree.children[Key("layer")]
    assert layer.total_params == 16
    zero = layer.children[Key("0")]
    assert zero.total_params == 16
    weight = zero.children[Key("weight")]
    assert weight.total_params == 16
    assert weight.is_tensor
    assert weight.name == "layer.0.weight"

    tree.flatten_single_children()
    assert [k.text for k in tree.children] == ["layer.0"]
    merged = tree.children[Key("layer.0")]
    assert merged.name == "layer.0"
    assert [k.text for k in merged.children] == ["weight"]
    assert merged.children[Key("weight")].tensor == _t(4, 4)


def test_totals_accumulate():
    tree = ModuleTree.build(
        [
            ("enc.layers.0.w", _t(2, 3)),
            ("enc.layers.1.w", _t(2, 3)),
            ("enc.norm", _t(3)),
            ("head", _t(5)),
        ]
    )
    assert tree.total_tensors == 4
    assert tree.total_params == 6 + 6 + 3 + 5
    enc = tree.children[Key("enc")]
    assert enc.total_tensors == 3
    assert enc.total_params == 15
    assert tree.find("enc.layers.1").total_params == 6
    assert tree.find("enc.missing") is None


def test_flatten_keeps_branching_nodes():
    tree = ModuleTree.build([("a.b.c.x", _t(1)), ("a.b.c.y", _t(1)), ("z", _t(1))])
    tree.flatten_single_children()
    keys = sorted(k.text for k in tree.children)
    assert keys == ["a.b.c", "z"]
    abc = tree.children[Key("a.b.c")]
    assert sorted(k.text for k in abc.children) == ["x", "y"]
    assert sorted(name for name, _ in tree.iter_tensors()) == ["a.b.c.x", "a.b.c.y", "z"]


def _single_module_chains(node, path=""):
    """Non-root module nodes left with exactly one child module."""
    found = []
    for key, child in node.children.items():
        child_path = f"{path}/{key.text}"
        if path and node.tensor is None and len(node.children) == 1 and child.children:
            found.append(path)
        found.extend(_single_module_chains(child, child_path))
    return found


def test_flatten_merges_into_tensor_with_children():
    tree = ModuleTree.build([("a.b.c", _t(2)), ("a.b.c.d", _t(1)), ("a.b.c.e", _t(1))])
    tree.flatten_single_children()
    assert [k.text for k in tree.children] == ["a.b.c"]
    abc = tree.children[Key("a.b.c")]
    assert abc.is_tensor
    assert abc.name == "a.b.c"
    assert abc.total_tensors == 3
    assert sorted(k.text for k in abc.children) == ["d", "e"]
    assert _single_module_chains(tree) == []


def test_flatten_is_idempotent():
    tree = ModuleTree.build(
        [
            ("p.q", _t(1)),
            ("p.q.r.s", _t(2)),
            ("a.b.c", _t(2)),
            ("a.b.c.d", _t(1)),
            ("a.b.c.e", _t(1)),
            ("enc.layers.0.attn.w", _t(3)),
            ("enc.layers.1.attn.w", _t(3)),
            ("head", _t(4)),
        ]
    )
    tree.flatten_single_children()
    once = copy.deepcopy(tree)
    tree.flatten_single_children()
    assert tree == once
    assert _single_module_chains(tree) == []
    pq = tree.children[Key("p.q")]
    assert pq.is_tensor
    assert [k.text for k in pq.children] == ["r"]
    assert [k.text for k in pq.children[Key("r")].children] == ["s"]
    assert sorted(n for n, _ in tree.iter_tensors()) == [
        "a.b.c",
        "a.b.c.d",
        "a.b.c.e",
        "enc.layers.0.attn.w",
        "enc.layers.1.attn.w",
        "head",
        "p.q",
        "p.q.r.s",
    ]


def test_tensor_and_module_with_same_name():
    tree = ModuleTree.build([("emb", _t(2)), ("emb.scale", _t(1))])
    emb = tree.children[Key("emb")]
    assert emb.is_tensor
    assert emb.total_tensors == 2
    assert Key("scale") in emb.children


def test_display_order_tensors_first_then_natural():
    tree = ModuleTree.build(
        [
            ("blocks.10.w", _t(1)),
            ("blocks.2.w", _t(1)),
            ("bias", _t(1)),
            ("blocks.1.w", _t(1)),
            ("alpha", _t(1)),
        ]
    )
    assert [k.text for k, _ in tree.display_children()] == ["alpha", "bias", "blocks"]
    blocks = tree.children[Key("blocks")]
    assert [k.text for k, _ in blocks.display_children()] == ["1", "2", "10"]
    walked = [(depth, key.text) for depth, key, _ in tree.walk()]
    assert walked[:4] == [(0, "alpha"), (0, "bias"), (0, "blocks"), (1, "1")]


def test_natural_key():
    names = ["layer10", "layer2", "layer1a", "layer1"]
    assert sorted(names, key=natural_key) == ["layer1", "layer1a", "layer2", "layer10"]
    assert sorted(["bias", "10", "0", "weight", "2"], key=natural_key) == ["0", "2", "10", "bias", "weight"]


def test_custom_delimiter():
    split = PathSplit("/")
    assert [k.text for k in split.split("model/layers/0")] == ["model", "layers", "0"]
    tree = ModuleTree.build([("model/w", _t(2)), ("model.x", _t(1))], split)
    assert sorted(k.text for k in tree.children) == ["model", "model.x"]


def test_split_keeps_empty_segments():
    assert [k.text for k in PathSplit().split("a..b")] == ["a", "", "b"]


def test_invalid_delimiter():
    with pytest.raises(ValueError):
        PathSplit("")
    with pytest.raises(ValueError):
        PathSplit("::")


def test_key_join_and_equality():
    full = "model.layers.3.attn"
    a, b, c, d = PathSplit().split(full)
    joined = b.join(c)
    assert joined.text == "layers.3"
    assert joined.absolute().text == "model.layers.3"
    assert c.is_index and not d.is_index
    assert Key("layers") == b
    assert hash(Key("layers")) == hash(b)
    assert len(joined) == len("layers.3")
    with pytest.raises(ValueError):
        a.join(Key("other.layers"))
