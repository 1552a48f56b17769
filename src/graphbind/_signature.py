from __future__ import annotations

import enum
import functools
import inspect
import types
import typing
from collections.abc import Generator, Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, cast, get_args, get_origin, get_type_hints

from ._context import Context
from ._errors import InvalidProviderError
from ._factory import NO_VALUE, Argument, Factory
from ._lifecycle import declares_hook, destroy_hook, initialize_hook
from ._scope import SINGLETON


if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from ._factory import Callback, ConditionFunc


_GENERATOR_ORIGINS = (Iterator, Generator, Iterable)


class ParamKind(enum.Enum):
    DIRECT = "direct"
    QUALIFIED = "qualified"
    PROVIDER = "provider"
    UNMANAGED = "unmanaged"
    CONTEXT = "context"
    CONTAINER = "container"


@dataclass(frozen=True)
class ParamShape:
    """Classification of a dependency key.

    `value` is the component type the key resolves to: the key itself for direct
    dependencies, the wrapped type for qualified and provider dependencies.
    `wrap` builds the wrapper value handed to the constructor.
    """

    key: Any
    value: Any
    kind: ParamKind
    qualifier: Any = None
    wrap: Callable[[Any], Any] | None = None

    @property
    def provider(self) -> bool:
        return self.kind in (ParamKind.PROVIDER, ParamKind.UNMANAGED)

    @property
    def unmanaged(self) -> bool:
        return self.kind is ParamKind.UNMANAGED

    @property
    def qualified(self) -> bool:
        return self.kind is ParamKind.QUALIFIED

    @property
    def reserved(self) -> bool:
        """Context and container parameters are supplied by the call, not the graph."""
        return self.kind in (ParamKind.CONTEXT, ParamKind.CONTAINER)


@functools.lru_cache(maxsize=None)
def describe_param(key: Any) -> ParamShape:
    """Classify `key`; wrappers are recognised by probing their generic origin."""
    from ._container import Container  # noqa: PLC0415

    if key is Context:
        return ParamShape(key, key, ParamKind.CONTEXT)
    if inspect.isclass(key) and issubclass(key, Container):
        return ParamShape(key, key, ParamKind.CONTAINER)

    origin = get_origin(key)
    args = get_args(key)
    if origin is None or not inspect.isclass(origin):
        return ParamShape(key, key, ParamKind.DIRECT)

    with_supplier = getattr(origin, "with_supplier", None)
    if callable(with_supplier) and len(args) == 1:
        kind = ParamKind.UNMANAGED if getattr(origin, "unmanaged", False) is True else ParamKind.PROVIDER
        return ParamShape(key, args[0], kind, wrap=with_supplier)

    with_value = getattr(origin, "with_value", None)
    if callable(with_value) and len(args) == 2:  # noqa: PLR2004
        return ParamShape(key, args[0], ParamKind.QUALIFIED, qualifier=args[1], wrap=with_value)

    return ParamShape(key, key, ParamKind.DIRECT)


def analyze_constructor(  # noqa: PLR0913
    ctor: Any,
    *,
    scope: str = SINGLETON,
    primary: bool = False,
    alternative: bool = False,
    startup: bool = False,
    priority: int = 0,
    qualifiers: Iterable[Any] = (),
    initializers: Sequence[Callback] = (),
    disposers: Sequence[Callback] = (),
    conditions: Sequence[ConditionFunc] = (),
) -> Factory:
    """Build the factory describing `ctor`.

    `ctor` is a class, a callable annotated with its return type, a generator
    function annotated ``-> Iterator[T]`` (the code after ``yield`` releases the
    component), or a pre-built instance (always a singleton).
    """
    if ctor is None:
        msg = "Can't register None as a constructor"
        raise InvalidProviderError(msg)

    generator = False
    if not callable(ctor):
        key, arguments, constructor = _instance_constructor(ctor)
        scope = SINGLETON
    else:
        if inspect.iscoroutinefunction(ctor) or inspect.isasyncgenfunction(ctor):
            msg = f"{_name(ctor)} is asynchronous; constructors must be synchronous callables"
            raise InvalidProviderError(msg)

        generator = inspect.isgeneratorfunction(ctor)
        sig = _signature(ctor)
        if inspect.isclass(ctor):
            _check_instantiable(ctor)
            key = ctor
        else:
            key = _component_key(ctor, sig.return_annotation, generator=generator)
        arguments = _arguments(ctor, sig)
        constructor = ctor

    factory_initializers: list[Callback] = []
    factory_disposers: list[Callback] = []
    if key is not NO_VALUE:
        if declares_hook(key, "initialize"):
            factory_initializers.append(initialize_hook)
        if declares_hook(key, "destroy"):
            factory_disposers.append(destroy_hook)
        factory_initializers.extend(initializers)
        factory_disposers.extend(disposers)

    return Factory(
        key=key,
        constructor=constructor,
        arguments=tuple(arguments),
        scope=scope,
        qualifiers=frozenset(qualifiers),
        primary=primary,
        alternative=alternative,
        startup=startup,
        priority=priority,
        initializers=tuple(factory_initializers),
        disposers=tuple(factory_disposers),
        conditions=tuple(conditions),
        generator=generator,
    )


def _instance_constructor(instance: Any) -> tuple[Any, list[Argument], Callable[[], Any]]:
    def supply() -> Any:
        return instance

    supply.__qualname__ = f"instance of {type(instance).__qualname__}"
    return type(instance), [], supply


def _signature(ctor: Callable[..., Any]) -> inspect.Signature:
    try:
        return inspect.signature(ctor, eval_str=True)
    except NameError as e:
        msg = f"Cannot evaluate the annotations of {_name(ctor)}: {e}"
        raise InvalidProviderError(msg) from e
    except (TypeError, ValueError) as e:
        msg = f"Cannot inspect the signature of {_name(ctor)}: {e}"
        raise InvalidProviderError(msg) from e


def _check_instantiable(cls: type) -> None:
    if is_protocol(cls):
        msg = f"Protocol {cls.__qualname__} cannot be instantiated; register an implementation instead"
        raise InvalidProviderError(msg)
    if inspect.isabstract(cls):
        msg = f"Abstract class {cls.__qualname__} cannot be instantiated; register an implementation instead"
        raise InvalidProviderError(msg)


def _component_key(ctor: Callable[..., Any], annotation: Any, *, generator: bool) -> Any:
    if annotation is inspect.Signature.empty:
        msg = f"{_name(ctor)} has no return annotation: the component type cannot be determined"
        raise InvalidProviderError(msg)

    if annotation is None or annotation is NO_VALUE:
        if generator:
            msg = f"Generator {_name(ctor)} must be annotated as Iterator[T] or Generator[T, None, None]"
            raise InvalidProviderError(msg)
        return NO_VALUE

    if generator:
        args = get_args(annotation)
        if get_origin(annotation) not in _GENERATOR_ORIGINS or not args:
            msg = f"Generator {_name(ctor)} must be annotated as Iterator[T] or Generator[T, None, None]"
            raise InvalidProviderError(msg)
        annotation = args[0]

    if get_origin(annotation) is tuple:
        msg = f"{_name(ctor)} has invalid returns: declares more than one value ({annotation!r})"
        raise InvalidProviderError(msg)

    key = _strip_optional(annotation)
    if _is_union(key):
        msg = f"{_name(ctor)} has invalid returns: {annotation!r} names more than one component type"
        raise InvalidProviderError(msg)
    return key


def _arguments(ctor: Callable[..., Any], sig: inspect.Signature) -> list[Argument]:
    arguments: list[Argument] = []
    for p in sig.parameters.values():
        if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
            continue

        if p.annotation is inspect.Parameter.empty:
            if p.default is inspect.Parameter.empty or p.kind is p.POSITIONAL_ONLY:
                msg = f"Parameter {p.name!r} of {_name(ctor)} has no annotation: its dependency cannot be determined"
                raise InvalidProviderError(msg)
            # left to its default value
            continue

        arguments.append(
            Argument(
                name=p.name,
                key=_strip_optional(p.annotation),
                keyword=p.kind is not p.POSITIONAL_ONLY,
                default=p.default,
            )
        )
    return arguments


def _is_union(annotation: Any) -> bool:
    return get_origin(annotation) in (typing.Union, types.UnionType)


def _strip_optional(annotation: Any) -> Any:
    """``X | None`` -> ``X``; any other annotation is returned as is."""
    if not _is_union(annotation):
        return annotation
    members = [a for a in get_args(annotation) if a is not NO_VALUE]
    if len(members) == 1:
        return members[0]
    return annotation


def _name(obj: Any) -> str:
    return getattr(obj, "__qualname__", None) or repr(obj)


def is_assignable(source: Any, target: Any) -> bool:
    """Whether a component of type `source` can be injected where `target` is expected.

    - equal keys are assignable;
    - for normal classes and ABCs: ``issubclass(source, target)``;
    - for Protocols: nominal conformance through the MRO, otherwise structural
      conformance (members, positional arity, return types).
    """
    if source == target:
        return True

    if not inspect.isclass(source) or not inspect.isclass(target):
        return False

    if is_protocol(target):
        if target in getattr(source, "__mro__", ()):
            return True
        return not protocol_mismatches(target, source)

    try:
        return issubclass(source, target)
    except TypeError:
        return False


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def is_protocol(tp: Any) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def is_protocol(tp: Any) -> bool:
        """Detect whether 'tp' is a typing.Protocol subclass (safe)."""
        return inspect.isclass(tp) and issubclass(tp, cast("type", Protocol)) and getattr(tp, "_is_protocol", False)


def protocol_mismatches(proto_cls: type, impl: type) -> list[str]:  # noqa: C901
    """Best-effort structural conformance: presence + basic callable arity + return type checks."""
    missing: list[str] = []
    signature_mismatches: list[str] = []

    try:
        proto_hints = get_type_hints(proto_cls, include_extras=True)
    except (NameError, TypeError):
        proto_hints = {}

    # Attributes required by annotations
    for name in proto_hints:
        if name.startswith("_"):
            continue
        if not hasattr(impl, name):
            missing.append(name)

    for name, proto_attr in proto_cls.__dict__.items():
        if name.startswith("_") or not inspect.isfunction(proto_attr):
            continue

        if not hasattr(impl, name):
            missing.append(name)
            continue

        impl_attr = getattr(impl, name)
        if not callable(impl_attr):
            signature_mismatches.append(f"{name}: not Callable on {impl.__name__}")
            continue

        try:
            proto_sig = inspect.signature(proto_attr)
            impl_sig = inspect.signature(impl_attr)
        except (TypeError, ValueError) as e:
            signature_mismatches.append(f"{name}: unable to compare signatures ({e})")
            continue

        proto_params = [p for p in proto_sig.parameters.values() if p.name != "self"]
        impl_params = [p for p in impl_sig.parameters.values() if p.name != "self"]

        if _positional_arity(impl_params) < _positional_arity(proto_params):
            signature_mismatches.append(
                f"{name}: impl has fewer required positional params "
                f"({_positional_arity(impl_params)}) than protocol "
                f"({_positional_arity(proto_params)})"
            )

        proto_ret = proto_sig.return_annotation
        impl_ret = impl_sig.return_annotation

        if (
            proto_ret is not inspect.Signature.empty
            and impl_ret is not inspect.Signature.empty
            and proto_ret is not Any
            and impl_ret is not Any
            and not _is_return_type_compatible(impl_ret, proto_ret)
        ):
            signature_mismatches.append(
                f"{name}: return type {impl_ret!r} is not compatible with protocol return type {proto_ret!r}"
            )

    return missing + signature_mismatches


def _positional_arity(params: list[inspect.Parameter]) -> int:
    return sum(
        1
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
        and p.default is inspect.Parameter.empty
    )


def _is_return_type_compatible(impl_ret: object, proto_ret: object) -> bool:
    # Exact match
    if impl_ret == proto_ret:
        return True

    # Handle class-based covariance
    if isinstance(impl_ret, type) and isinstance(proto_ret, type):
        return issubclass(impl_ret, proto_ret)

    # Everything else (Union, Protocol, TypeVar, etc.) -> conservative failure
    return False
