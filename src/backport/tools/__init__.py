"""Tools the LLM conflict resolver may call."""

import time
from functools import wraps

from pydantic_ai import RunContext
from pydantic_ai.exceptions import ModelRetry

from backport.tools.workspace import (
    Workspace,
    read_file,
    show_version,
    submit_resolution,
    write_file,
)


def _log_tool_execution(func):
    """Log every tool call through the workspace's logger.

    Logs the call with its arguments, then either the result size and
    duration, the ModelRetry message, or the unexpected exception.
    """
    @wraps(func)
    def wrapper(ctx: RunContext[Workspace], *args, **kwargs):
        tool_name = func.__name__
        logger = ctx.deps.logger
        start_time = time.time()

        logger.info(
            f"Tool '{tool_name}' invoked",
            tool_name=tool_name,
            args=list(args),
            kwargs=kwargs,
        )

        try:
            result = func(ctx, *args, **kwargs)
        except ModelRetry as e:
            logger.warning(
                f"Tool '{tool_name}' raised ModelRetry",
                tool_name=tool_name,
                retry_message=str(e),
            )
            raise
        except Exception as e:
            logger.error(
                f"Tool '{tool_name}' raised unexpected exception",
                tool_name=tool_name,
                exception_type=type(e).__name__,
                exception_message=str(e),
                _exc_info=e,
            )
            raise

        logger.info(
            f"Tool '{tool_name}' succeeded",
            tool_name=tool_name,
            execution_time_ms=round((time.time() - start_time) * 1000, 2),
            result_size=len(str(result)),
        )
        logger.trace(
            f"Tool '{tool_name}' full result:\n{result}",
            tool_name=tool_name,
        )
        return result

    return wrapper


_raw_tools = [
    read_file,
    show_version,
    write_file,
    submit_resolution,
]

# For Agent(tools=[...])
workspace_tools = [_log_tool_execution(tool) for tool in _raw_tools]

__all__ = [
    "Workspace",
    "read_file",
    "show_version",
    "submit_resolution",
    "workspace_tools",
    "write_file",
]
