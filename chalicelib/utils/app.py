import functools
from typing import Callable

from chalice import Response

from chalicelib.constants.status_codes import http400, http401, http404, http409, http500, http503
from chalicelib.utils.exceptions import AccessDenied, ConflictException, InvariantViolation, \
    NotAuthorizedException, NumberOfRetriesExceeded, OrderNotCompleted, RecordNotFound, ValidationException
from chalicelib.utils.logger import logger, log_exception


def error_response(error: Exception, msg: str = "", status_code: int = 400, *args, **kwargs):
    log_exception(error=error, msg=msg, status_code=status_code, *args, **kwargs)
    return Response(
        body={
            'error': str(error),
            'exception': error.__class__.__name__,
            "message": str(msg),
            'details': getattr(error, 'details', None),
            'error_id': getattr(logger, 'current_request_id', None),
            'level': getattr(error, 'LEVEL', 'exception')
        },
        status_code=status_code,
        headers={'Content-Type': 'application/json'}
    )


def request_exception_handler(func: Callable):
    @functools.wraps(func)
    def result(*args, **kwargs):
        try:
            logger.info(f'Calling function {func.__name__}')
            return func(*args, **kwargs)
        except ValidationException as validation_error:
            return error_response(
                error=validation_error,
                msg=f'function = {func.__name__} , error = {validation_error}',
                status_code=http400)
        except RecordNotFound as not_found:
            return error_response(
                error=not_found,
                msg=f'function = {func.__name__} , error = {not_found}',
                status_code=http404)
        except ConflictException as conflict:
            return error_response(
                error=conflict,
                msg=f'function = {func.__name__} , error = {conflict}',
                status_code=http409)
        except (AccessDenied, NotAuthorizedException) as access_denied:
            return error_response(
                error=access_denied,
                msg="You don't have permissions to access this resource",
                status_code=http401)
        except NumberOfRetriesExceeded as retries_exceeded:
            return error_response(
                error=retries_exceeded,
                msg='The service is busy, please try again',
                status_code=http503)
        except (InvariantViolation, OrderNotCompleted) as internal_error:
            return error_response(
                error=OrderNotCompleted('Order could not be completed'),
                msg=f'function = {func.__name__}, error = {internal_error}',
                status_code=http500)
        except Exception as exception:
            return error_response(
                error=exception,
                msg=f'function = {func.__name__}, error = {exception}',
                status_code=http500)
    return result


def log_start_finish(func: Callable):
    @functools.wraps(func)
    def result(*args, **kwargs):
        logger.info(f'{func.__name__} ::: started')
        response = func(*args, **kwargs)
        logger.info(f'{func.__name__} ::: finished')
        return response
    return result
