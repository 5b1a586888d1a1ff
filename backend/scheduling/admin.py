from django.contrib import admin
from .models import RecurrenceRule, SessionInstance


@admin.register(RecurrenceRule)
class RecurrenceRuleAdmin(admin.ModelAdmin):
    list_display = ['service', 'professor_id', 'student_id', 'freq', 'interval', 'start_date', 'end_type', 'active']
    list_filter = ['freq', 'end_type', 'active', 'created_at']
    search_fields = ['service', 'location', 'notes']
    readonly_fields = ['created_at', 'updated_at']
    ordering = ['-created_at']


@admin.register(SessionInstance)
class SessionInstanceAdmin(admin.ModelAdmin):
    list_display = ['start_time', 'end_time', 'professor_id', 'student_id', 'status', 'is_modified', 'recurrence_rule']
    list_filter = ['status', 'is_modified', 'is_series_anchor']
    search_fields = ['service', 'location', 'notes']
    readonly_fields = ['original_start_time', 'original_end_time', 'created_at', 'updated_at']
    ordering = ['-start_time']
