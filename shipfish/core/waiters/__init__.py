import logging
import time

from botocore import waiter, xform_name
from botocore.docs.docstring import WaiterDocstring
from botocore.exceptions import WaiterError
from botocore.utils import get_service_module_name
from botocore.waiter import NormalizedOperationMethod


logger = logging.getLogger(__name__)


def get_hooked_waiter(client, waiter_name: str) -> "HookedWaiter":
    """
    Return a :py:class:`HookedWaiter` for the boto3 waiter named
    ``waiter_name`` (snake_case, e.g. ``services_stable``) on ``client``.

    Raises:
        ValueError: ``client`` has no waiter named ``waiter_name``
    """
    config = client._get_waiter_config()  # pylint:disable=protected-access
    if not config:
        raise ValueError("Waiter does not exist: %s" % waiter_name)
    model = waiter.WaiterModel(config)
    mapping = {xform_name(name): name for name in model.waiter_names}
    if waiter_name not in mapping:
        raise ValueError("Waiter does not exist: %s" % waiter_name)
    return create_hooked_waiter_with_client(mapping[waiter_name], model, client)


def create_hooked_waiter_with_client(waiter_name: str, waiter_model: waiter.WaiterModel, client) -> "HookedWaiter":
    """
    Build a :py:class:`HookedWaiter` for ``waiter_name`` (the CamelCase name
    from the service's waiter model, e.g. ``ServicesStable``) that polls
    ``client``.  The returned object gets its own documented class, like the
    waiters boto3 itself hands out.
    """
    single_waiter_config = waiter_model.get_waiter(waiter_name)
    operation_method = NormalizedOperationMethod(
        getattr(client, xform_name(single_waiter_config.operation))
    )

    def wait(self, **kwargs):
        HookedWaiter.wait(self, **kwargs)

    wait.__doc__ = WaiterDocstring(
        waiter_name=waiter_name,
        event_emitter=client.meta.events,
        service_model=client.meta.service_model,
        service_waiter_model=waiter_model,
        include_signature=False
    )
    class_name = f'{get_service_module_name(client.meta.service_model)}.HookedWaiter.{waiter_name}'
    waiter_class = type(class_name, (HookedWaiter,), {'wait': wait})
    return waiter_class(waiter_name, single_waiter_config, operation_method)


class HookedWaiter:
    """
    A boto3 style waiter that also calls a list of hooks after every poll.  We
    use the hooks to show the operator what ECS is doing while we wait for a
    service to stabilize or a task to stop.

    ``wait()`` takes the keyword arguments of the waiter's AWS operation (e.g.
    ``cluster`` and ``services``) plus these of our own, none of which are
    passed on to AWS:

    * ``WaiterConfig``: ``{'Delay': seconds, 'MaxAttempts': n}``, overriding the
      waiter model's own values
    * ``WaiterHooks``: callables with this prototype::

          waiter_hook(state, response, num_attempts, **kwargs)

      ``state`` is one of 'waiting', 'success', 'failure', 'error' or
      'timeout', ``response`` is what the last poll returned and
      ``num_attempts`` counts the polls so far.  ``kwargs`` are the AWS
      keyword arguments plus ``name``, ``config``, ``Delay`` and
      ``MaxAttempts``.
    * ``WaiterRetryableErrors``: AWS error codes that don't end the wait.  A
      poll that fails with one of these counts as one more 'waiting' attempt.

    Polling is bounded: we sleep ``Delay`` seconds between polls and, after
    ``MaxAttempts`` polls, give up with a ``WaiterError`` whose reason starts
    with "Max attempts exceeded".
    """

    def __init__(self, name, config, operation_method):
        self._operation_method = operation_method
        self.name = name
        self.config = config

    def match(self, response):
        """
        Return the first acceptor of our waiter model that matches
        ``response``, or ``None``.
        """
        for acceptor in self.config.acceptors:
            if acceptor.matcher_func(response):
                return acceptor
        return None

    def wait(self, **kwargs):
        config = kwargs.pop('WaiterConfig', {})
        hooks = kwargs.pop('WaiterHooks', [])
        retryable_errors = set(kwargs.pop('WaiterRetryableErrors', ()))
        delay = config.get('Delay', self.config.delay)
        max_attempts = config.get('MaxAttempts', self.config.max_attempts)
        hook_kwargs = dict(kwargs, name=self.name, config=self.config, Delay=delay, MaxAttempts=max_attempts)

        def notify(state, response, num_attempts):
            for hook in hooks:
                hook(state, response, num_attempts, **hook_kwargs)

        state = 'waiting'
        last_matched = None
        num_attempts = 0
        while True:
            num_attempts += 1
            response = self._operation_method(**kwargs)
            acceptor = self.match(response)
            if acceptor is not None:
                last_matched = acceptor
                # hooks know "retry" as "waiting"
                state = 'waiting' if acceptor.state == 'retry' else acceptor.state
            elif 'Error' in response:
                # An error no acceptor expects ends the wait, unless it is one we were told to ride out
                code = response['Error'].get('Code', 'Unknown')
                if code not in retryable_errors:
                    notify('error', response, num_attempts)
                    raise WaiterError(
                        name=self.name,
                        reason=f"An error occurred ({code}): {response['Error'].get('Message', 'Unknown')}",
                        last_response=response,
                    )
                logger.warning('%s: poll %d of %d failed with %s; still waiting', self.name, num_attempts,
                               max_attempts, code)
            notify(state, response, num_attempts)
            if state == 'success':
                logger.debug('%s: matched the success state after %d polls', self.name, num_attempts)
                return
            if state == 'failure':
                raise WaiterError(
                    name=self.name,
                    reason=f'Waiter encountered a terminal failure state: {last_matched.explanation}',
                    last_response=response,
                )
            if num_attempts >= max_attempts:
                notify('timeout', response, num_attempts)
                reason = 'Max attempts exceeded'
                if last_matched is not None:
                    reason += f'. Previously accepted state: {last_matched.explanation}'
                raise WaiterError(name=self.name, reason=reason, last_response=response)
            time.sleep(delay)
