import pytest

from magikoopa.demangle import DemangleError, demangle


def test_plain_function():
    assert demangle("_Z3fooi") == "foo(int)"


def test_nested_no_params():
    assert demangle("_ZN3foo3barEv") == "foo::bar()"


def test_pointer_to_const():
    assert demangle("_Z3fooPKc") == "foo(char const*)"


def test_const_method_and_constructor():
    assert demangle("_ZNK1A1fEv") == "A::f() const"
    assert demangle("_ZN1AC1Ev") == "A::A()"
    assert demangle("_ZN1AD2Ev") == "A::~A()"


def test_substitution_reuses_prefix():
    assert demangle("_ZN1A1fERKS_") == "A::f(A const&)"


def test_data_symbol_is_just_name():
    assert demangle("_ZN5outer5innerE") == "outer::inner"


@pytest.mark.parametrize("bad", ["main", "_Z", "_Z3fo", "_ZN3fooE3", "_Z3fooS_"])
def test_invalid_names_raise(bad):
    with pytest.raises(DemangleError):
        demangle(bad)