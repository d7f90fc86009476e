import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Exam',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=255)),
                ('description', models.TextField(blank=True)),
                ('duration_minutes', models.PositiveIntegerField()),
                ('open_date', models.DateTimeField()),
                ('close_date', models.DateTimeField()),
                ('anti_cheat_enabled', models.BooleanField(default=True)),
                ('max_warnings', models.PositiveIntegerField(default=2)),
                ('allow_review', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('teacher', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='exams', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-open_date'],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('duration_minutes__gt', 0)), name='exam_duration_positive'),
                    models.CheckConstraint(condition=models.Q(('close_date__gt', models.F('open_date'))), name='exam_close_after_open'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Question',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('text', models.TextField()),
                ('question_type', models.CharField(choices=[('mcq', 'Multiple Choice'), ('true_false', 'True / False'), ('short_answer', 'Short Answer'), ('long_answer', 'Long Answer')], default='mcq', max_length=20)),
                ('points', models.PositiveIntegerField(default=1)),
                ('order_number', models.PositiveIntegerField()),
                ('correct_answer', models.TextField(blank=True, help_text='Model answer used for exact-match auto-grading')),
                ('exam', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='questions', to='exams.exam')),
            ],
            options={
                'ordering': ['order_number'],
                'constraints': [
                    models.UniqueConstraint(fields=('exam', 'order_number'), name='question_order_unique_per_exam'),
                    models.CheckConstraint(condition=models.Q(('points__gt', 0)), name='question_points_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Option',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('text', models.CharField(max_length=255)),
                ('is_correct', models.BooleanField(default=False)),
                ('order_number', models.PositiveIntegerField(default=0)),
                ('question', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='options', to='exams.question')),
            ],
            options={
                'ordering': ['order_number', 'id'],
            },
        ),
    ]
