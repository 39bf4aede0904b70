from contextlib import contextmanager
import inspect
import io
import logging
import os
from typing import (
    Any,
    Callable,
    Generic,
    List,
    Mapping,
    TextIO,
    Type,
    TypeVar,
    Union,
)

import attr
from schematics import Model, types
import schematics.exceptions
import toml


_LOG = logging.getLogger(__name__)

_METADATA_KEY = 'ircwire_config'


class Config(Model):
    """Base class for configuration schemas.

    Use :func:`option` to create fields in the schema.

    >>> class MyConfig(Config):
    ...     delay = option(float, default=0.5, help="Number of seconds to wait")
    ...     channels = option(WordList, help="Channels to join")
    """
    def __repr__(self):
        return f"{self.__class__.__name__}({', '.join(f'{a.name}={repr(a.value)}' for a in self.atoms())})"


#: Raised when configuration fails to validate
ConfigError = schematics.exceptions.DataError


_example_mode = False


@contextmanager
def example_mode():
    """For the duration of this context manager, try to use example values before default values."""
    global _example_mode
    old = _example_mode
    _example_mode = True
    try:
        yield
    finally:
        _example_mode = old


class WordList(types.ListType):
    """A list of strings that also accepts a space-separated string instead."""
    def __init__(self, min_size=None, max_size=None, **kwargs):
        super().__init__(types.StringType, min_size, max_size, **kwargs)

    def convert(self, value, context=None):
        if isinstance(value, str):
            value = value.split()
        return super().convert(value, context)


_T = TypeVar("_T")
# Mapping of Python types to Schematics field types
_TYPE_MAP = {
    str: types.StringType,
    int: types.IntType,
    float: types.FloatType,
    bool: types.BooleanType,
    WordList: WordList,
}
# Type of default value for an option
_DefaultValue = Union[None, _T]
# Type of callable to create a default value for an option
_DefaultCall = Callable[[], _DefaultValue[_T]]
# Type of a "default" or "example" argument
_DefaultArg = Union[_DefaultValue[_T], _DefaultCall[_T]]


def is_allowable_type(cls: Type) -> bool:
    """Is *cls* allowed as a configuration option type?"""
    return cls in _TYPE_MAP


def structure(data: Mapping[str, Any], cls: Type[Config]) -> Config:
    """Create an instance of *cls* from plain Python structure *data*."""
    o = cls(data)
    o.validate()
    return o


def unstructure(obj: Config) -> Mapping[str, Any]:
    """Get plain Python structured data from *obj*."""
    return obj.to_native()


def loads(s: str, cls: Type[Config]) -> Config:
    """Create an instance of *cls* from the TOML in *s*."""
    return structure(toml.loads(s), cls)


def load(f: TextIO, cls: Type[Config]) -> Config:
    """Create an instance of *cls* from the TOML in *f*."""
    return structure(toml.load(f), cls)


class _Default(Generic[_T]):
    """A callable to get a default or example value.

    Both *default* and *example* can be either a value or a callable that returns a value.

    When called "normally", returns the value of the first environment variable in *env* that exists, or returns
    *default* if no environment variable is used.

    When called inside ``with example_mode()``, returns *example* if non-None, otherwise returns *default* (but without
    environment variable behaviour). This allows configuration to define required fields without default values that can
    still generate a useful example (see :func:`generate_toml_example`) without otherwise supplying data.
    """
    def __init__(self, default: _DefaultArg = None, example: _DefaultArg = None, env: List[str] = None):
        self._default: _DefaultCall = default if callable(default) else lambda: default
        self._example: _DefaultCall = example if callable(example) else lambda: example
        self._env: List[str] = env or []

    def __call__(self) -> Union[str, _DefaultValue[_T]]:
        if _example_mode:
            return self._get_example()
        else:
            return self._get_default()

    def _get_default(self, use_env: bool = True) -> Union[str, _DefaultValue[_T]]:
        if use_env:
            for var in self._env:
                if var in os.environ:
                    return os.environ[var]
        return self._default()

    def _get_example(self) -> Union[str, _DefaultValue[_T]]:
        example = self._example()
        if example is None:
            example = self._get_default(use_env=False)
        return example


@attr.s(frozen=True)
class _OptionMetadata:
    type: Type = attr.ib()
    help: str = attr.ib(default="", validator=attr.validators.instance_of(str))


def option(cls: Type, *,
           required: bool = None,
           default: _DefaultArg = None,
           example: _DefaultArg = None,
           env: Union[str, List[str]] = None,
           help: str):
    """Create a configuration option that contains a value of type *cls*.

    :param cls:         Option type (see :func:`is_allowable_type`)
    :param required:    A non-None value is required? (default: False if default is None, otherwise True)
    :param default:     Default value if no value is supplied (default: None)
    :param example:     Default value when generating example configuration (default: None)
    :param env:         Environment variables to try if no value is supplied, before using default (default: [])
    :param help:        Description of option, included when generating example configuration
    """
    if not is_allowable_type(cls):
        raise TypeError(f"cls must be one of {_TYPE_MAP.keys()}")

    if required is None:
        required = default is not None

    if isinstance(env, str):
        env = [env]

    field = _TYPE_MAP[cls]
    return field(
        required=required,
        default=_Default(default, example, env),
        metadata={_METADATA_KEY: _OptionMetadata(type=cls, help=help)},
    )


def make_example(cls: Type[Config]) -> Config:
    """Create an instance of *cls* without supplying data, using "example" or "default" values for each option."""
    with example_mode():
        o = cls()
        o.validate()
        return o


def generate_toml_example(obj: Union[Config, Type[Config]], section: str = None, commented: bool = False) -> str:
    """Generate an example configuration from *obj* as a TOML string.

    Each option is preceded by its help text as a ``##`` comment.  Options without a value are written commented out.
    If *section* is given the options are written under a ``[section]`` heading.
    """
    if inspect.isclass(obj):
        obj = make_example(obj)
    encoder = toml.TomlEncoder()
    stream = io.StringIO()

    def writeline(s):
        if commented and s and not s.startswith("#"):
            s = f"# {s}"
        stream.write(f"{s}\n")

    if section is not None:
        writeline(f"[{section}]")
    for atom in obj.atoms():
        metadata = atom.field.metadata[_METADATA_KEY]
        if metadata.help:
            writeline(f"## {metadata.help}")
        if atom.value is None:
            writeline(f"# {atom.name} =")
        else:
            writeline(f"{atom.name} = {encoder.dump_value(atom.value)}")
    return stream.getvalue()
