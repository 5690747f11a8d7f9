"""
Authentication decorators for the JSON views.

Django's ``login_required`` redirects to a login page; API callers get a 401/403
JSON body instead. Both decorators accept sync and async views.
"""

from functools import wraps
import inspect

from django.http import JsonResponse


def _denied(user, staff_only):
    if not user.is_authenticated:
        return JsonResponse({'error': 'Authentication required'}, status=401)
    if staff_only and not user.is_staff:
        return JsonResponse({'error': 'Administrator access required'}, status=403)
    return None


def _guard(view_func, staff_only):
    if inspect.iscoroutinefunction(view_func):
        @wraps(view_func)
        async def async_wrapper(request, *args, **kwargs):
            user = await request.auser()
            denied = _denied(user, staff_only)
            if denied is not None:
                return denied
            return await view_func(request, *args, **kwargs)

        return async_wrapper

    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        denied = _denied(request.user, staff_only)
        if denied is not None:
            return denied
        return view_func(request, *args, **kwargs)

    return wrapper


def json_login_required(view_func):
    return _guard(view_func, staff_only=False)


def json_staff_required(view_func):
    return _guard(view_func, staff_only=True)
