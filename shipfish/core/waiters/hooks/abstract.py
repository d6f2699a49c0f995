import click


class AbstractWaiterHook:
    """
    Base class for the callables we hand to
    :py:class:`shipfish.core.waiters.HookedWaiter` in ``WaiterHooks``.
    Subclasses override the per-state methods they care about.
    """

    def mark(self, status, response, num_attempts, **kwargs):
        click.secho('=' * 72, fg='yellow', bold=True)

    def setup(self, status, response, num_attempts, **kwargs):
        """
        Called once per iteration, before the per-state method.
        """
        pass

    def waiting(self, status, response, num_attempts, **kwargs):
        pass

    def success(self, status, response, num_attempts, **kwargs):
        pass

    def failure(self, status, response, num_attempts, **kwargs):
        pass

    def error(self, status, response, num_attempts, **kwargs):
        pass

    def timeout(self, status, response, num_attempts, **kwargs):
        pass

    def cleanup(self, status, response, num_attempts, **kwargs):
        """
        Called once per iteration, after the per-state method.
        """
        pass

    def __call__(self, status, response, num_attempts, **kwargs):
        """
        args:
            * 'status': the current state of the waiter. One of 'waiting', 'success', 'failure', 'error'
              or 'timeout'.
            * 'response': the boto3 response from the last invocation of our waiter's operation
            * 'num_attempts': the current iteration number

        kwargs: the kwargs the waiter was called with, plus 'name', 'config', 'Delay' and 'MaxAttempts'.
        """
        self.setup(status, response, num_attempts, **kwargs)
        handler = getattr(self, status, None)
        if handler is not None:
            handler(status, response, num_attempts, **kwargs)
        self.cleanup(status, response, num_attempts, **kwargs)
